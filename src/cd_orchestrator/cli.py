"""Typer CLI entrypoint for cd_orchestrator."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
import yaml

from cd_orchestrator.config import AppSettings, load_settings
from cd_orchestrator.detect.change_detector import detect_changes
from cd_orchestrator.errors import DiffUnavailable, ReportPublishFailed, ScanFailed
from cd_orchestrator.image.severity import SEVERITY_ORDER, evaluate_gate
from cd_orchestrator.logging_utils import configure_logging
from cd_orchestrator.models import LocalImage, RunSummary
from cd_orchestrator.run import ReleaseRunOptions, build_registry_client, run_release

DIFF_UNAVAILABLE_EXIT = 2
REPORT_FAILED_EXIT = 3

app = typer.Typer(
    add_completion=False,
    help="cd_orchestrator command line interface.",
    no_args_is_help=True,
)


def _load_and_optionally_configure_logger(
    config_file: Path | None,
    configure: bool,
) -> tuple[AppSettings, logging.Logger]:
    settings = load_settings(config_file=config_file)
    if configure:
        logger = configure_logging(settings.paths.logs_root / "release.log")
    else:
        logger = logging.getLogger("cd_orchestrator")
    return settings, logger


def _config_file_option() -> Path | None:
    return typer.Option(
        None,
        "--config-file",
        help="Optional settings YAML path.",
        exists=False,
        file_okay=True,
        dir_okay=False,
        readable=True,
    )


@app.command("show-config")
def show_config(config_file: Path | None = _config_file_option()) -> None:
    """Print the effective configuration after env overrides (secrets masked)."""

    settings = load_settings(config_file=config_file)
    typer.echo(yaml.safe_dump(settings.as_dict(), sort_keys=False))


@app.command("list-services")
def list_services(config_file: Path | None = _config_file_option()) -> None:
    """List configured services with their trigger paths and namespaces."""

    settings = load_settings(config_file=config_file)
    for service in settings.service_descriptors():
        namespace = service.target_namespace or "<unmapped>"
        paths = ",".join(sorted(service.source_paths))
        typer.echo(f"{service.name}\tnamespace={namespace}\tpaths={paths}\tchart={service.chart}")


@app.command("detect-changes")
def detect_changes_command(
    base: str = typer.Option(..., "--base", help="Old revision (commit, tag or ref)."),
    head: str = typer.Option("HEAD", "--head", help="New revision (commit, tag or ref)."),
    as_json: bool = typer.Option(False, "--json", help="Print the change set as JSON."),
    config_file: Path | None = _config_file_option(),
) -> None:
    """Show which services the revision range touches."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=False)
    try:
        change_set = detect_changes(
            settings.paths.repo_root,
            base,
            head,
            settings.service_descriptors(),
            settings.change_detection.shared_template_paths,
            logger=logger,
        )
    except DiffUnavailable as exc:
        typer.echo(f"diff unavailable: {exc}", err=True)
        raise typer.Exit(code=DIFF_UNAVAILABLE_EXIT) from exc

    if as_json:
        payload = {
            "base_sha": change_set.revisions.base_sha,
            "head_sha": change_set.revisions.head_sha,
            "shared_templates_changed": change_set.shared_templates_changed,
            "services": list(change_set.service_names),
            "modified_paths": sorted(change_set.modified_paths),
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    typer.echo(f"base_sha: {change_set.revisions.base_sha}")
    typer.echo(f"head_sha: {change_set.revisions.head_sha}")
    typer.echo(f"modified_paths: {len(change_set.modified_paths)}")
    typer.echo(f"shared_templates_changed: {change_set.shared_templates_changed}")
    typer.echo(f"services: {','.join(change_set.service_names) or '-'}")


@app.command("scan-image")
def scan_image(
    image: str = typer.Option(..., "--image", help="Local image reference to scan."),
    service: str = typer.Option("adhoc", "--service", help="Service name used in messages."),
    blocking_severity: str | None = typer.Option(
        None,
        "--blocking-severity",
        help=f"Override the gate threshold ({', '.join(SEVERITY_ORDER)}).",
    ),
    config_file: Path | None = _config_file_option(),
) -> None:
    """Scan an existing local image and apply the publish gate."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=False)
    threshold = (blocking_severity or settings.gate.blocking_severity).strip().upper()
    if threshold not in SEVERITY_ORDER:
        raise typer.BadParameter(f"blocking-severity must be one of: {', '.join(SEVERITY_ORDER)}")

    registry = build_registry_client(settings, logger=logger)
    try:
        findings = registry.scan(LocalImage(service=service, reference=image))
    except ScanFailed as exc:
        typer.echo(f"scan failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    result = evaluate_gate(findings, threshold)
    typer.echo(f"findings_total: {len(result.findings)}")
    typer.echo(f"blocking_severity: {result.blocking_severity}")
    typer.echo(f"gate_passed: {result.gate_passed}")
    for finding in result.blocking_findings:
        typer.echo(f"blocking: {finding.identifier} {finding.severity} {finding.package or ''}".rstrip())
    if not result.gate_passed:
        raise typer.Exit(code=1)


@app.command("release-run")
def release_run(
    base: str = typer.Option(..., "--base", help="Old revision of the triggering range."),
    head: str = typer.Option("HEAD", "--head", help="New revision of the triggering range."),
    branch: str = typer.Option(..., "--branch", help="Triggering branch name."),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Detect changes and report every changed service as skipped.",
    ),
    max_workers: int | None = typer.Option(
        None,
        "--max-workers",
        min=1,
        help="Override the worker pool size.",
    ),
    only_service: list[str] = typer.Option(
        [],
        "--only-service",
        help="Restrict the run to these changed services (repeatable).",
    ),
    config_file: Path | None = _config_file_option(),
) -> None:
    """Build, scan, gate, publish and deploy every service changed in the revision range."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True)
    known = {service.name for service in settings.services}
    unknown = sorted(set(only_service) - known)
    if unknown:
        raise typer.BadParameter(f"unknown service(s): {', '.join(unknown)}")

    options = ReleaseRunOptions(
        dry_run=dry_run,
        max_workers=max_workers,
        only_services=tuple(only_service),
    )
    try:
        result = run_release(settings, base=base, head=head, branch=branch, options=options, logger=logger)
    except DiffUnavailable as exc:
        logger.error("release_run.aborted reason=diff_unavailable error=%s", exc)
        typer.echo(f"diff unavailable: {exc}", err=True)
        raise typer.Exit(code=DIFF_UNAVAILABLE_EXIT) from exc
    except ReportPublishFailed as exc:
        if isinstance(exc.summary, RunSummary):
            _echo_summary(exc.summary)
        typer.echo(f"report publish failed: {exc}", err=True)
        raise typer.Exit(code=REPORT_FAILED_EXIT) from exc

    summary = result.summary
    _echo_summary(summary)
    if result.summary_path is not None:
        typer.echo(f"summary_path: {result.summary_path}")
    raise typer.Exit(code=summary.exit_code)


def _echo_summary(summary: RunSummary) -> None:
    typer.echo(f"run_id: {summary.run_id}")
    typer.echo(f"branch: {summary.branch}")
    typer.echo(f"revision: {summary.revision}")
    typer.echo(f"services_changed: {len(summary.services)}")
    for name, status in summary.statuses.items():
        typer.echo(f"{name}: {status}")
    typer.echo(f"succeeded: {summary.succeeded}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
