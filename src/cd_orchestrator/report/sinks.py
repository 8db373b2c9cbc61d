"""Destinations a finished run summary is published to."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import polars as pl

from cd_orchestrator.models import RunSummary
from cd_orchestrator.utils.io import write_json_atomically, write_parquet_atomically, write_text_atomically

LOGGER = logging.getLogger(__name__)

SERVICE_RESULTS_SCHEMA: dict[str, pl.DataType] = {
    "run_id": pl.String,
    "service": pl.String,
    "status": pl.String,
    "namespace": pl.String,
    "image_reference": pl.String,
    "digest": pl.String,
    "findings_total": pl.Int64,
    "blocking_findings_total": pl.Int64,
    "release_action": pl.String,
    "ready_within_timeout": pl.Boolean,
    "error": pl.String,
    "duration_sec": pl.Float64,
}


class ReportSink(Protocol):
    def publish(self, summary: RunSummary) -> None: ...


class LogReportSink:
    """Write a human-readable summary to the log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def publish(self, summary: RunSummary) -> None:
        self._logger.info(
            "release_summary run_id=%s branch=%s revision=%s services=%s succeeded=%s",
            summary.run_id,
            summary.branch,
            summary.revision[:12],
            len(summary.services),
            summary.succeeded,
        )
        for name, report in summary.services.items():
            self._logger.info("release_summary.service %s: %s", name, report.status)
            for finding in report.blocking_findings:
                self._logger.warning(
                    "release_summary.blocking_finding service=%s id=%s severity=%s package=%s",
                    name,
                    finding.identifier,
                    finding.severity,
                    finding.package,
                )
            if report.error and report.status != "gate-blocked":
                self._logger.warning("release_summary.error service=%s error=%s", name, report.error)


class JsonFileReportSink:
    """Persist the summary JSON and a per-service results table under the artifacts root."""

    def __init__(self, artifacts_root: Path) -> None:
        self._output_dir = artifacts_root / "run_summaries"
        self.summary_path: Path | None = None
        self.service_results_path: Path | None = None

    def publish(self, summary: RunSummary) -> None:
        summary_path = self._output_dir / f"{summary.run_id}_release_run_summary.json"
        results_path = self._output_dir / f"{summary.run_id}_service_results.parquet"

        write_json_atomically(summary.to_dict(), summary_path)

        rows = [
            {
                "run_id": summary.run_id,
                "service": report.service,
                "status": report.status,
                "namespace": report.namespace,
                "image_reference": report.image_reference,
                "digest": report.digest,
                "findings_total": len(report.findings),
                "blocking_findings_total": len(report.blocking_findings),
                "release_action": report.release_action,
                "ready_within_timeout": report.ready_within_timeout,
                "error": report.error,
                "duration_sec": round(report.duration_sec, 3),
            }
            for report in summary.services.values()
        ]
        results_df = (
            pl.DataFrame(rows, schema_overrides=SERVICE_RESULTS_SCHEMA)
            if rows
            else pl.DataFrame(schema=SERVICE_RESULTS_SCHEMA)
        )
        write_parquet_atomically(results_df, results_path)

        self.summary_path = summary_path
        self.service_results_path = results_path


def render_markdown(summary: RunSummary) -> str:
    """Render the summary as a markdown status table."""

    verdict = "succeeded" if summary.succeeded else "failed"
    lines = [
        f"## Release run `{summary.run_id}` {verdict}",
        "",
        f"Branch `{summary.branch}` at `{summary.revision[:12]}`.",
        "",
    ]
    if not summary.services:
        lines.append("No services changed.")
        return "\n".join(lines) + "\n"

    lines.extend(
        [
            "| service | status | namespace | image | error |",
            "|---|---|---|---|---|",
        ]
    )
    for name, report in summary.services.items():
        error = (report.error or "").replace("|", "\\|").replace("\n", " ")
        lines.append(
            f"| {name} | {report.status} | {report.namespace or ''} | {report.image_reference or ''} | {error} |"
        )

    blocked = [report for report in summary.services.values() if report.blocking_findings]
    if blocked:
        lines.extend(["", "### Blocking findings", ""])
        for report in blocked:
            for finding in report.blocking_findings:
                package = f" in `{finding.package}`" if finding.package else ""
                lines.append(f"- **{report.service}**: {finding.identifier} ({finding.severity}){package}")
    return "\n".join(lines) + "\n"


class MarkdownReportSink:
    """Write a markdown status surface, e.g. a CI step summary file."""

    def __init__(self, output_path: Path, append: bool = True) -> None:
        self._output_path = output_path
        self._append = append

    def publish(self, summary: RunSummary) -> None:
        text = render_markdown(summary)
        if self._append and self._output_path.exists():
            with self._output_path.open("a", encoding="utf-8") as handle:
                handle.write(text)
            return
        write_text_atomically(text, self._output_path)
