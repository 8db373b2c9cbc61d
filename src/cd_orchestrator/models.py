"""Immutable records exchanged between the release run stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

ServiceStatus = Literal[
    "skipped",
    "build-failed",
    "gate-blocked",
    "publish-failed",
    "deploy-failed",
    "deployed",
]
SERVICE_STATUS_VALUES: tuple[ServiceStatus, ...] = (
    "skipped",
    "build-failed",
    "gate-blocked",
    "publish-failed",
    "deploy-failed",
    "deployed",
)
SUCCESS_STATUSES: frozenset[str] = frozenset({"skipped", "deployed"})

ReleaseAction = Literal["install", "upgrade"]


@dataclass(frozen=True, slots=True)
class ServiceDescriptor:
    """Static definition of one deployable unit."""

    name: str
    source_paths: frozenset[str]
    target_namespace: str | None = None
    build_context: str = ""
    dockerfile: str | None = None
    chart: str = ""
    smoke_url: str | None = None


@dataclass(frozen=True, slots=True)
class RevisionRange:
    """Triggering revision range as requested and as resolved to commit SHAs."""

    base: str
    head: str
    base_sha: str
    head_sha: str


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Services whose source paths intersect the modified paths of a revision range."""

    revisions: RevisionRange
    modified_paths: frozenset[str]
    services: tuple[ServiceDescriptor, ...]
    shared_templates_changed: bool = False

    @property
    def service_names(self) -> tuple[str, ...]:
        return tuple(service.name for service in self.services)

    def is_empty(self) -> bool:
        return not self.services


@dataclass(frozen=True, slots=True)
class Finding:
    """One vulnerability reported by the scanner."""

    severity: str
    identifier: str
    package: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"severity": self.severity, "identifier": self.identifier, "package": self.package}


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Scanner findings and the gate decision derived from them."""

    findings: tuple[Finding, ...]
    blocking_severity: str
    gate_passed: bool
    blocking_findings: tuple[Finding, ...] = ()


@dataclass(frozen=True, slots=True)
class LocalImage:
    """Image built on the local daemon, not yet published."""

    service: str
    reference: str
    image_id: str | None = None


@dataclass(frozen=True, slots=True)
class BuildArtifact:
    """Image produced for one service; carries a digest only once published."""

    service: str
    image_reference: str
    scan_result: ScanResult
    digest: str | None = None

    @property
    def gate_passed(self) -> bool:
        return self.scan_result.gate_passed

    @property
    def published(self) -> bool:
        return self.digest is not None

    def __post_init__(self) -> None:
        if self.digest is not None and not self.scan_result.gate_passed:
            raise ValueError(f"Artifact for {self.service} cannot carry a digest after a failed gate")


@dataclass(frozen=True, slots=True)
class ReleaseApplyResult:
    """What the cluster did with a release and whether it became ready."""

    action: ReleaseAction
    ready: bool


@dataclass(frozen=True, slots=True)
class DeploymentOutcome:
    """Terminal result of applying one service's artifact to the cluster."""

    service: str
    namespace: str | None
    release_action: ReleaseAction | None
    ready_within_timeout: bool
    error: str | None = None
    smoke_passed: bool | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.ready_within_timeout and self.smoke_passed is not False


@dataclass(frozen=True, slots=True)
class ServiceReport:
    """Terminal per-service record handed to the reporter."""

    service: str
    status: ServiceStatus
    image_reference: str | None = None
    digest: str | None = None
    findings: tuple[Finding, ...] = ()
    blocking_findings: tuple[Finding, ...] = ()
    namespace: str | None = None
    release_action: ReleaseAction | None = None
    ready_within_timeout: bool | None = None
    error: str | None = None
    duration_sec: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "status": self.status,
            "image_reference": self.image_reference,
            "digest": self.digest,
            "findings_total": len(self.findings),
            "blocking_findings": [finding.as_dict() for finding in self.blocking_findings],
            "namespace": self.namespace,
            "release_action": self.release_action,
            "ready_within_timeout": self.ready_within_timeout,
            "error": self.error,
            "duration_sec": round(self.duration_sec, 3),
        }


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Aggregate outcome of one release run."""

    run_id: str
    base_revision: str
    revision: str
    branch: str
    started_ts: datetime
    finished_ts: datetime
    services: dict[str, ServiceReport] = field(default_factory=dict)

    @property
    def statuses(self) -> dict[str, ServiceStatus]:
        return {name: report.status for name, report in self.services.items()}

    @property
    def succeeded(self) -> bool:
        return all(report.status in SUCCESS_STATUSES for report in self.services.values())

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def status_counts(self) -> dict[str, int]:
        counts = {status: 0 for status in SERVICE_STATUS_VALUES}
        for report in self.services.values():
            counts[report.status] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "base_revision": self.base_revision,
            "revision": self.revision,
            "branch": self.branch,
            "started_ts": self.started_ts.isoformat(),
            "finished_ts": self.finished_ts.isoformat(),
            "succeeded": self.succeeded,
            "exit_code": self.exit_code,
            "status_counts": self.status_counts(),
            "statuses": self.statuses,
            "services": {name: report.as_dict() for name, report in self.services.items()},
        }
