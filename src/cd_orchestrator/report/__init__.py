"""Run summary aggregation and publication."""

from cd_orchestrator.report.reporter import RunReporter
from cd_orchestrator.report.sinks import (
    JsonFileReportSink,
    LogReportSink,
    MarkdownReportSink,
    ReportSink,
    render_markdown,
)

__all__ = [
    "RunReporter",
    "JsonFileReportSink",
    "LogReportSink",
    "MarkdownReportSink",
    "ReportSink",
    "render_markdown",
]
