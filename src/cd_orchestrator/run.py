"""Release run orchestration: detect, fan out per service, report."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from cd_orchestrator.config import AppSettings
from cd_orchestrator.deploy.cluster import ClusterClient, HelmClusterClient
from cd_orchestrator.deploy.namespaces import NamespaceTable
from cd_orchestrator.deploy.orchestrator import DeployOptions, deploy_service
from cd_orchestrator.deploy.smoke import HttpSmokeProber, ReadinessProber
from cd_orchestrator.detect.change_detector import detect_changes
from cd_orchestrator.image.pipeline import run_image_pipeline
from cd_orchestrator.image.registry import DockerRegistryClient, RegistryClient
from cd_orchestrator.models import ChangeSet, RunSummary, ServiceDescriptor, ServiceReport, ServiceStatus
from cd_orchestrator.report.reporter import RunReporter
from cd_orchestrator.report.sinks import JsonFileReportSink, LogReportSink, MarkdownReportSink, ReportSink
from cd_orchestrator.utils.time_utils import new_run_id

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReleaseRunOptions:
    """Runtime options for one release run."""

    dry_run: bool = False
    max_workers: int | None = None
    only_services: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ReleaseRunResult:
    """Return object for release run outcomes."""

    run_id: str
    change_set: ChangeSet
    summary: RunSummary
    summary_path: Path | None
    service_results_path: Path | None

    @property
    def exit_code(self) -> int:
        return self.summary.exit_code


@dataclass(frozen=True, slots=True)
class ServiceTaskContext:
    """Everything a per-service task needs; shared read-only across workers."""

    revision: str
    registry: RegistryClient
    cluster: ClusterClient
    namespaces: NamespaceTable
    registry_host: str
    repository: str
    blocking_severity: str
    deploy_options: DeployOptions
    prober: ReadinessProber | None = None


def is_deploy_branch(branch: str, deploy_branches: Sequence[str]) -> bool:
    """An empty allow-list deploys from every branch."""

    return not deploy_branches or branch in deploy_branches


def process_service(
    service: ServiceDescriptor,
    context: ServiceTaskContext,
    logger: logging.Logger | None = None,
) -> ServiceReport:
    """Run one service end to end and return its terminal report.

    Deployment starts only after this service's own publish succeeded.
    """

    effective_logger = logger or LOGGER
    started = time.monotonic()
    stage_status: ServiceStatus = "build-failed"
    try:
        image_result = run_image_pipeline(
            service,
            context.revision,
            context.registry,
            registry_host=context.registry_host,
            repository=context.repository,
            blocking_severity=context.blocking_severity,
            logger=effective_logger,
        )
        if not image_result.published:
            return ServiceReport(
                service=service.name,
                status=image_result.status,
                image_reference=image_result.image_reference,
                findings=image_result.findings,
                blocking_findings=image_result.blocking_findings,
                namespace=service.target_namespace,
                error=image_result.error,
                duration_sec=time.monotonic() - started,
            )

        artifact = image_result.artifact
        stage_status = "deploy-failed"
        outcome = deploy_service(
            service,
            artifact,
            namespaces=context.namespaces,
            cluster=context.cluster,
            options=context.deploy_options,
            prober=context.prober,
            logger=effective_logger,
        )
        return ServiceReport(
            service=service.name,
            status="deployed" if outcome.succeeded else "deploy-failed",
            image_reference=artifact.image_reference,
            digest=artifact.digest,
            findings=artifact.scan_result.findings,
            namespace=outcome.namespace,
            release_action=outcome.release_action,
            ready_within_timeout=outcome.ready_within_timeout,
            error=outcome.error,
            duration_sec=time.monotonic() - started,
        )
    except Exception as exc:
        effective_logger.exception("release_run.service_crashed service=%s stage_status=%s", service.name, stage_status)
        return ServiceReport(
            service=service.name,
            status=stage_status,
            error=f"unexpected {type(exc).__name__}: {exc}",
            duration_sec=time.monotonic() - started,
        )


def _filter_change_set(change_set: ChangeSet, only_services: Sequence[str]) -> ChangeSet:
    if not only_services:
        return change_set
    wanted = set(only_services)
    return ChangeSet(
        revisions=change_set.revisions,
        modified_paths=change_set.modified_paths,
        services=tuple(service for service in change_set.services if service.name in wanted),
        shared_templates_changed=change_set.shared_templates_changed,
    )


def default_sinks(settings: AppSettings, logger: logging.Logger | None = None) -> list[ReportSink]:
    """Sinks configured by settings: log always, artifacts and markdown when enabled."""

    sinks: list[ReportSink] = [LogReportSink(logger=logger)]
    if settings.reporting.write_artifacts:
        sinks.append(JsonFileReportSink(settings.paths.artifacts_root))
    if settings.reporting.markdown_path is not None:
        sinks.append(MarkdownReportSink(settings.reporting.markdown_path))
    return sinks


def build_registry_client(settings: AppSettings, logger: logging.Logger | None = None) -> DockerRegistryClient:
    return DockerRegistryClient(
        repo_root=settings.paths.repo_root,
        host=settings.registry.host,
        username=settings.registry.username,
        token=settings.registry.token,
        docker_bin=settings.registry.docker_bin,
        trivy_bin=settings.registry.trivy_bin,
        scan_timeout_sec=settings.registry.scan_timeout_sec,
        logger=logger,
    )


def build_cluster_client(settings: AppSettings, logger: logging.Logger | None = None) -> HelmClusterClient:
    return HelmClusterClient(
        repo_root=settings.paths.repo_root,
        charts={service.name: service.chart for service in settings.service_descriptors()},
        api_server=settings.cluster.api_server,
        ca_file=settings.cluster.ca_file,
        token=settings.cluster.token,
        helm_bin=settings.deploy.helm_bin,
        logger=logger,
    )


def default_prober(settings: AppSettings, logger: logging.Logger | None = None) -> ReadinessProber | None:
    """HTTP smoke prober when ``deploy.smoke_enabled`` is set, otherwise no post-deploy probe."""

    if not settings.deploy.smoke_enabled:
        return None
    return HttpSmokeProber(
        max_attempts=settings.deploy.smoke_max_attempts,
        interval_sec=settings.deploy.smoke_interval_sec,
        logger=logger,
    )


def run_release(
    settings: AppSettings,
    *,
    base: str,
    head: str,
    branch: str,
    options: ReleaseRunOptions | None = None,
    registry: RegistryClient | None = None,
    cluster: ClusterClient | None = None,
    prober: ReadinessProber | None = None,
    sinks: Sequence[ReportSink] | None = None,
    logger: logging.Logger | None = None,
) -> ReleaseRunResult:
    """Detect changed services, build/scan/publish/deploy each in parallel, and report.

    Raises DiffUnavailable before any service work starts when the revision
    range cannot be resolved. Per-service failures never raise.
    """

    effective_logger = logger or LOGGER
    run_options = options or ReleaseRunOptions()
    run_id = new_run_id()
    started_mono = time.monotonic()

    services = settings.service_descriptors()
    change_set = detect_changes(
        settings.paths.repo_root,
        base,
        head,
        services,
        settings.change_detection.shared_template_paths,
        logger=effective_logger,
    )
    change_set = _filter_change_set(change_set, run_options.only_services)

    effective_sinks = list(sinks) if sinks is not None else default_sinks(settings, logger=effective_logger)
    reporter = RunReporter(run_id, change_set, branch, sinks=effective_sinks, logger=effective_logger)
    max_workers = run_options.max_workers or settings.execution.max_workers
    deployable = is_deploy_branch(branch, settings.deploy.deploy_branches)

    effective_logger.info(
        "release_run.start run_id=%s branch=%s revision=%s changed=%s dry_run=%s deployable_branch=%s max_workers=%s",
        run_id,
        branch,
        change_set.revisions.head_sha[:12],
        len(change_set.services),
        run_options.dry_run,
        deployable,
        max_workers,
    )

    if change_set.services and (run_options.dry_run or not deployable):
        reason = "dry_run" if run_options.dry_run else "not_deploy_branch"
        effective_logger.info("release_run.skipping run_id=%s reason=%s services=%s", run_id, reason, len(change_set.services))
        for service in change_set.services:
            reporter.record(ServiceReport(service=service.name, status="skipped", namespace=service.target_namespace))
    elif change_set.services:
        context = ServiceTaskContext(
            revision=change_set.revisions.head_sha,
            registry=registry or build_registry_client(settings, logger=effective_logger),
            cluster=cluster or build_cluster_client(settings, logger=effective_logger),
            namespaces=NamespaceTable(settings.namespaces),
            registry_host=settings.registry.host,
            repository=settings.registry.repository,
            blocking_severity=settings.gate.blocking_severity,
            deploy_options=DeployOptions(
                wait_timeout_sec=settings.deploy.wait_timeout_sec,
                force_upgrade=settings.deploy.force_upgrade,
            ),
            prober=prober or default_prober(settings, logger=effective_logger),
        )
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="release") as executor:
            futures: dict[Future[ServiceReport], ServiceDescriptor] = {
                executor.submit(process_service, service, context, effective_logger): service
                for service in change_set.services
            }
            for future in as_completed(futures):
                service = futures[future]
                try:
                    report = future.result()
                except Exception as exc:
                    effective_logger.exception("release_run.task_failed service=%s", service.name)
                    report = ServiceReport(service=service.name, status="build-failed", error=str(exc))
                reporter.record(report)

    summary = reporter.finalize()

    summary_path = None
    service_results_path = None
    for sink in effective_sinks:
        if isinstance(sink, JsonFileReportSink):
            summary_path = sink.summary_path
            service_results_path = sink.service_results_path

    effective_logger.info(
        "release_run.complete run_id=%s succeeded=%s status_counts=%s duration_sec=%.2f summary_path=%s",
        run_id,
        summary.succeeded,
        {status: count for status, count in summary.status_counts().items() if count},
        time.monotonic() - started_mono,
        summary_path,
    )
    return ReleaseRunResult(
        run_id=run_id,
        change_set=change_set,
        summary=summary,
        summary_path=summary_path,
        service_results_path=service_results_path,
    )
