"""Apply a gated, published artifact to its namespace and wait for readiness."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cd_orchestrator.deploy.cluster import ClusterClient
from cd_orchestrator.deploy.namespaces import NamespaceTable
from cd_orchestrator.deploy.smoke import ReadinessProber
from cd_orchestrator.errors import (
    DeployTimeout,
    ReleaseApplyFailed,
    SmokeCheckFailed,
    UnknownNamespaceMapping,
)
from cd_orchestrator.models import BuildArtifact, DeploymentOutcome, ServiceDescriptor

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeployOptions:
    """Release behavior shared by every service in a run."""

    wait_timeout_sec: int = 300
    force_upgrade: bool = True


def deploy_service(
    service: ServiceDescriptor,
    artifact: BuildArtifact,
    *,
    namespaces: NamespaceTable,
    cluster: ClusterClient,
    options: DeployOptions | None = None,
    prober: ReadinessProber | None = None,
    logger: logging.Logger | None = None,
) -> DeploymentOutcome:
    """Install or upgrade the service's release and report readiness.

    On a readiness timeout the release is left as it is; there is no
    automatic rollback.
    """

    effective_logger = logger or LOGGER
    deploy_options = options or DeployOptions()
    if artifact.service != service.name:
        raise ValueError(f"Artifact for {artifact.service} handed to deployment of {service.name}")
    if not artifact.gate_passed or not artifact.published:
        raise ValueError(f"Artifact for {service.name} is not gated and published")

    try:
        namespace = namespaces.resolve(service.name)
    except UnknownNamespaceMapping as exc:
        effective_logger.error("deploy.unknown_namespace service=%s", service.name)
        return DeploymentOutcome(
            service=service.name,
            namespace=None,
            release_action=None,
            ready_within_timeout=False,
            error=str(exc),
        )

    release_action = None
    try:
        install = not cluster.release_exists(service.name, namespace)
        release_action = "install" if install else "upgrade"
        effective_logger.info(
            "deploy.apply service=%s namespace=%s action=%s image=%s timeout_sec=%s",
            service.name,
            namespace,
            release_action,
            artifact.image_reference,
            deploy_options.wait_timeout_sec,
        )
        applied = cluster.apply_release(
            service.name,
            namespace,
            artifact.image_reference,
            install=install,
            force=deploy_options.force_upgrade and not install,
            wait_timeout_sec=deploy_options.wait_timeout_sec,
        )
    except Exception as exc:
        if isinstance(exc, ReleaseApplyFailed):
            message = str(exc)
        else:
            effective_logger.exception("deploy.apply_crashed service=%s namespace=%s", service.name, namespace)
            message = f"{service.name}: unexpected {type(exc).__name__}: {exc}"
        effective_logger.error("deploy.apply_failed service=%s namespace=%s error=%s", service.name, namespace, message)
        return DeploymentOutcome(
            service=service.name,
            namespace=namespace,
            release_action=release_action,
            ready_within_timeout=False,
            error=message,
        )

    if not applied.ready:
        timeout = DeployTimeout(service.name, namespace, deploy_options.wait_timeout_sec)
        effective_logger.error("deploy.timeout service=%s namespace=%s action=%s", service.name, namespace, applied.action)
        return DeploymentOutcome(
            service=service.name,
            namespace=namespace,
            release_action=applied.action,
            ready_within_timeout=False,
            error=str(timeout),
        )

    smoke_passed: bool | None = None
    error: str | None = None
    if service.smoke_url and prober is not None:
        smoke_passed = prober.wait_until_ready(service.name, service.smoke_url)
        if not smoke_passed:
            error = str(SmokeCheckFailed(service.name, f"{service.smoke_url} never became ready"))

    effective_logger.info(
        "deploy.complete service=%s namespace=%s action=%s ready=%s smoke_passed=%s",
        service.name,
        namespace,
        applied.action,
        applied.ready,
        smoke_passed,
    )
    return DeploymentOutcome(
        service=service.name,
        namespace=namespace,
        release_action=applied.action,
        ready_within_timeout=True,
        error=error,
        smoke_passed=smoke_passed,
    )
