"""Per-service image pipeline: build, scan, gate, publish."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Literal

from cd_orchestrator.errors import BuildFailed, GateBlocked, PublishFailed, ScanFailed, ServiceError
from cd_orchestrator.image.registry import RegistryClient, build_image_reference
from cd_orchestrator.image.severity import DEFAULT_BLOCKING_SEVERITY, evaluate_gate
from cd_orchestrator.models import BuildArtifact, Finding, ScanResult, ServiceDescriptor

LOGGER = logging.getLogger(__name__)

ImagePipelineStatus = Literal["published", "build-failed", "gate-blocked", "publish-failed"]


@dataclass(frozen=True, slots=True)
class ImagePipelineResult:
    """Terminal result of one service's image pipeline."""

    service: str
    status: ImagePipelineStatus
    image_reference: str
    artifact: BuildArtifact | None = None
    error: str | None = None
    retryable: bool = False

    @property
    def published(self) -> bool:
        return self.status == "published" and self.artifact is not None and self.artifact.published

    @property
    def findings(self) -> tuple[Finding, ...]:
        return self.artifact.scan_result.findings if self.artifact else ()

    @property
    def blocking_findings(self) -> tuple[Finding, ...]:
        return self.artifact.scan_result.blocking_findings if self.artifact else ()


def _failure_message(exc: Exception) -> str:
    if isinstance(exc, ServiceError):
        return exc.detail
    return f"unexpected {type(exc).__name__}: {exc}"


def run_image_pipeline(
    service: ServiceDescriptor,
    revision: str,
    registry: RegistryClient,
    *,
    registry_host: str,
    repository: str,
    blocking_severity: str = DEFAULT_BLOCKING_SEVERITY,
    logger: logging.Logger | None = None,
) -> ImagePipelineResult:
    """Run build, scan, gate and publish for one service, strictly in that order.

    Every failure is converted into this service's terminal result; nothing
    raised here can affect another service's pipeline.
    """

    effective_logger = logger or LOGGER
    image_reference = build_image_reference(registry_host, repository, service.name, revision)
    effective_logger.info("image_pipeline.start service=%s image=%s", service.name, image_reference)

    try:
        local_image = registry.build(service, image_reference)
    except Exception as exc:
        if not isinstance(exc, BuildFailed):
            effective_logger.exception("image_pipeline.build_crashed service=%s", service.name)
        effective_logger.error("image_pipeline.build_failed service=%s error=%s", service.name, _failure_message(exc))
        return ImagePipelineResult(service.name, "build-failed", image_reference, error=_failure_message(exc))

    try:
        findings = registry.scan(local_image)
    except Exception as exc:
        if not isinstance(exc, ScanFailed):
            effective_logger.exception("image_pipeline.scan_crashed service=%s", service.name)
        # No trustworthy findings means the gate cannot pass.
        message = f"scan failed: {_failure_message(exc)}"
        effective_logger.error("image_pipeline.scan_failed service=%s error=%s", service.name, message)
        unscanned = ScanResult(findings=(), blocking_severity=blocking_severity, gate_passed=False)
        artifact = BuildArtifact(service=service.name, image_reference=image_reference, scan_result=unscanned)
        return ImagePipelineResult(service.name, "gate-blocked", image_reference, artifact=artifact, error=message)

    scan_result = evaluate_gate(findings, blocking_severity)
    artifact = BuildArtifact(service=service.name, image_reference=image_reference, scan_result=scan_result)
    effective_logger.info(
        "image_pipeline.scanned service=%s findings=%s blocking=%s threshold=%s gate_passed=%s",
        service.name,
        len(scan_result.findings),
        len(scan_result.blocking_findings),
        scan_result.blocking_severity,
        scan_result.gate_passed,
    )

    if not scan_result.gate_passed:
        blocked = GateBlocked(service.name, scan_result.blocking_findings, scan_result.blocking_severity)
        effective_logger.warning("image_pipeline.gate_blocked service=%s detail=%s", service.name, blocked.detail)
        return ImagePipelineResult(service.name, "gate-blocked", image_reference, artifact=artifact, error=blocked.detail)

    try:
        digest = registry.push(local_image, image_reference)
    except Exception as exc:
        if not isinstance(exc, PublishFailed):
            effective_logger.exception("image_pipeline.publish_crashed service=%s", service.name)
        effective_logger.error("image_pipeline.publish_failed service=%s error=%s", service.name, _failure_message(exc))
        return ImagePipelineResult(
            service.name,
            "publish-failed",
            image_reference,
            artifact=artifact,
            error=_failure_message(exc),
            retryable=True,
        )

    published = dataclasses.replace(artifact, digest=digest)
    effective_logger.info("image_pipeline.published service=%s image=%s digest=%s", service.name, image_reference, digest)
    return ImagePipelineResult(service.name, "published", image_reference, artifact=published)
