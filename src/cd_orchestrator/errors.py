"""Exception taxonomy for release runs."""

from __future__ import annotations

from typing import Sequence

from cd_orchestrator.models import Finding


class CdOrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class DiffUnavailable(CdOrchestratorError):
    """The revision range cannot be resolved; the whole run is aborted."""


class ReportPublishFailed(CdOrchestratorError):
    """One or more report sinks failed to publish the run summary.

    ``summary`` carries the finalized RunSummary so callers can still show it.
    """

    def __init__(self, message: str, summary: object | None = None) -> None:
        super().__init__(message)
        self.summary = summary


class ServiceError(CdOrchestratorError):
    """Failure scoped to a single service; never aborts sibling services."""

    retryable: bool = False

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.detail = message


class BuildFailed(ServiceError):
    """Image build exited non-zero."""


class ScanFailed(ServiceError):
    """Vulnerability scanner could not produce findings."""


class GateBlocked(ServiceError):
    """Findings at or above the blocking severity prevent publication."""

    def __init__(self, service: str, blocking_findings: Sequence[Finding], threshold: str) -> None:
        identifiers = ", ".join(f"{item.identifier}({item.severity})" for item in blocking_findings)
        super().__init__(service, f"{len(blocking_findings)} finding(s) at or above {threshold}: {identifiers}")
        self.blocking_findings = tuple(blocking_findings)
        self.threshold = threshold


class PublishFailed(ServiceError):
    """Registry push failed; rerunning the pipeline may succeed."""

    retryable = True


class UnknownNamespaceMapping(ServiceError):
    """Service has no entry in the namespace table."""


class ReleaseApplyFailed(ServiceError):
    """Release tool rejected the install/upgrade."""


class DeployTimeout(ServiceError):
    """Release did not report ready within the wait timeout."""

    def __init__(self, service: str, namespace: str, timeout_sec: int) -> None:
        super().__init__(service, f"release in namespace {namespace} not ready within {timeout_sec}s")
        self.namespace = namespace
        self.timeout_sec = timeout_sec


class SmokeCheckFailed(ServiceError):
    """Post-deploy endpoint probe never succeeded."""
