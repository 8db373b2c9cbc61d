from __future__ import annotations

import json
from pathlib import Path

import polars as pl
import pytest

from conftest import RecordingSink
from cd_orchestrator.errors import ReportPublishFailed
from cd_orchestrator.models import ChangeSet, Finding, RevisionRange, ServiceDescriptor, ServiceReport
from cd_orchestrator.report import JsonFileReportSink, MarkdownReportSink, RunReporter, render_markdown

REVISIONS = RevisionRange(base="main~1", head="main", base_sha="1" * 40, head_sha="2" * 40)


def _change_set(*names: str) -> ChangeSet:
    return ChangeSet(
        revisions=REVISIONS,
        modified_paths=frozenset(f"{name}/file" for name in names),
        services=tuple(ServiceDescriptor(name=name, source_paths=frozenset({f"{name}/"})) for name in names),
    )


class BrokenSink:
    def publish(self, summary) -> None:
        raise OSError("disk full")


def test_summary_reflects_each_service_independently() -> None:
    sink = RecordingSink()
    reporter = RunReporter("run-1", _change_set("vote", "result"), "main", sinks=[sink])

    reporter.record(ServiceReport(service="result", status="deployed", namespace="frontend"))
    reporter.record(ServiceReport(service="vote", status="deploy-failed", namespace="frontend", error="timeout"))
    summary = reporter.finalize()

    assert summary.statuses == {"vote": "deploy-failed", "result": "deployed"}
    assert summary.succeeded is False
    assert summary.exit_code == 1
    assert summary.revision == "2" * 40
    assert summary.branch == "main"
    assert sink.summaries == [summary]


def test_empty_change_set_summary_is_successful() -> None:
    sink = RecordingSink()

    summary = RunReporter("run-2", _change_set(), "main", sinks=[sink]).finalize()

    assert summary.services == {}
    assert summary.exit_code == 0
    assert len(sink.summaries) == 1


def test_missing_outcomes_are_still_listed() -> None:
    reporter = RunReporter("run-3", _change_set("vote", "worker"), "main")
    reporter.record(ServiceReport(service="vote", status="deployed"))

    summary = reporter.finalize()

    assert summary.statuses == {"vote": "deployed", "worker": "build-failed"}
    assert summary.services["worker"].error == "no outcome recorded"


def test_record_rejects_foreign_and_duplicate_reports() -> None:
    reporter = RunReporter("run-4", _change_set("vote"), "main")
    reporter.record(ServiceReport(service="vote", status="deployed"))

    with pytest.raises(ValueError):
        reporter.record(ServiceReport(service="db", status="deployed"))
    with pytest.raises(ValueError):
        reporter.record(ServiceReport(service="vote", status="build-failed"))


def test_finalize_emits_exactly_once() -> None:
    sink = RecordingSink()
    reporter = RunReporter("run-5", _change_set("vote"), "main", sinks=[sink])
    reporter.record(ServiceReport(service="vote", status="skipped"))
    reporter.finalize()

    with pytest.raises(RuntimeError):
        reporter.finalize()
    with pytest.raises(RuntimeError):
        reporter.record(ServiceReport(service="vote", status="deployed"))
    assert len(sink.summaries) == 1


def test_broken_sink_does_not_starve_the_others() -> None:
    sink = RecordingSink()
    reporter = RunReporter("run-6", _change_set("vote"), "main", sinks=[BrokenSink(), sink])
    reporter.record(ServiceReport(service="vote", status="deployed"))

    with pytest.raises(ReportPublishFailed) as excinfo:
        reporter.finalize()
    assert len(sink.summaries) == 1
    assert excinfo.value.summary is sink.summaries[0]
    assert excinfo.value.summary.statuses == {"vote": "deployed"}


def test_json_sink_writes_summary_and_results_table(tmp_path: Path) -> None:
    sink = JsonFileReportSink(tmp_path / "artifacts")
    reporter = RunReporter("run-7", _change_set("vote", "worker"), "main", sinks=[sink])
    reporter.record(ServiceReport(service="vote", status="deployed", digest="sha256:" + "f" * 64, namespace="frontend"))
    reporter.record(
        ServiceReport(
            service="worker",
            status="gate-blocked",
            findings=(Finding("CRITICAL", "CVE-2024-9999", "openssl"),),
            blocking_findings=(Finding("CRITICAL", "CVE-2024-9999", "openssl"),),
        )
    )
    reporter.finalize()

    payload = json.loads(sink.summary_path.read_text(encoding="utf-8"))
    assert payload["statuses"] == {"vote": "deployed", "worker": "gate-blocked"}
    assert payload["services"]["worker"]["blocking_findings"][0]["identifier"] == "CVE-2024-9999"
    assert payload["exit_code"] == 1

    results = pl.read_parquet(sink.service_results_path)
    assert results.height == 2
    assert results.filter(pl.col("service") == "worker")["blocking_findings_total"].to_list() == [1]


def test_json_sink_writes_empty_results_table(tmp_path: Path) -> None:
    sink = JsonFileReportSink(tmp_path)
    RunReporter("run-8", _change_set(), "main", sinks=[sink]).finalize()

    assert pl.read_parquet(sink.service_results_path).height == 0


def test_markdown_lists_blocking_findings(tmp_path: Path) -> None:
    output = tmp_path / "step_summary.md"
    output.write_text("# CI\n", encoding="utf-8")
    reporter = RunReporter("run-9", _change_set("worker"), "main", sinks=[MarkdownReportSink(output)])
    reporter.record(
        ServiceReport(
            service="worker",
            status="gate-blocked",
            blocking_findings=(Finding("CRITICAL", "CVE-2024-9999", "openssl"),),
            error="1 finding(s) at or above CRITICAL",
        )
    )
    summary = reporter.finalize()

    text = output.read_text(encoding="utf-8")
    assert text.startswith("# CI\n")
    assert "| worker | gate-blocked |" in text
    assert "CVE-2024-9999 (CRITICAL) in `openssl`" in text
    assert render_markdown(summary) in text
