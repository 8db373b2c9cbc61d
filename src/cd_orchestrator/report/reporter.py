"""Collect per-service outcomes into a single run summary."""

from __future__ import annotations

import logging
from typing import Sequence

from cd_orchestrator.errors import ReportPublishFailed
from cd_orchestrator.models import ChangeSet, RunSummary, ServiceReport
from cd_orchestrator.report.sinks import ReportSink
from cd_orchestrator.utils.time_utils import now_utc

LOGGER = logging.getLogger(__name__)

MISSING_OUTCOME_ERROR = "no outcome recorded"


class RunReporter:
    """Aggregates terminal service reports and emits the RunSummary once.

    ``record`` and ``finalize`` are meant to be called from the single
    aggregating thread; workers hand over immutable reports instead of
    touching shared state.
    """

    def __init__(
        self,
        run_id: str,
        change_set: ChangeSet,
        branch: str,
        sinks: Sequence[ReportSink] = (),
        logger: logging.Logger | None = None,
    ) -> None:
        self.run_id = run_id
        self._change_set = change_set
        self._branch = branch
        self._sinks = tuple(sinks)
        self._logger = logger or LOGGER
        self._expected = change_set.service_names
        self._reports: dict[str, ServiceReport] = {}
        self._started_ts = now_utc()
        self._summary: RunSummary | None = None

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(name for name in self._expected if name not in self._reports)

    def record(self, report: ServiceReport) -> None:
        if self._summary is not None:
            raise RuntimeError(f"Run {self.run_id} already finalized")
        if report.service not in self._expected:
            raise ValueError(f"Service {report.service} is not part of the change set")
        if report.service in self._reports:
            raise ValueError(f"Outcome for {report.service} already recorded")
        self._reports[report.service] = report
        self._logger.info(
            "run_reporter.recorded run_id=%s service=%s status=%s pending=%s",
            self.run_id,
            report.service,
            report.status,
            len(self.pending),
        )

    def finalize(self) -> RunSummary:
        """Build the summary, publish it to every sink, and return it."""

        if self._summary is not None:
            raise RuntimeError(f"Run {self.run_id} already finalized")

        services: dict[str, ServiceReport] = {}
        for name in self._expected:
            report = self._reports.get(name)
            if report is None:
                self._logger.error("run_reporter.missing_outcome run_id=%s service=%s", self.run_id, name)
                report = ServiceReport(service=name, status="build-failed", error=MISSING_OUTCOME_ERROR)
            services[name] = report

        summary = RunSummary(
            run_id=self.run_id,
            base_revision=self._change_set.revisions.base_sha,
            revision=self._change_set.revisions.head_sha,
            branch=self._branch,
            started_ts=self._started_ts,
            finished_ts=now_utc(),
            services=services,
        )
        self._summary = summary

        failed_sinks: list[str] = []
        for sink in self._sinks:
            try:
                sink.publish(summary)
            except Exception:
                self._logger.exception("run_reporter.sink_failed run_id=%s sink=%s", self.run_id, type(sink).__name__)
                failed_sinks.append(type(sink).__name__)
        if failed_sinks:
            raise ReportPublishFailed(
                f"Run summary not published to: {', '.join(failed_sinks)}",
                summary=summary,
            )
        return summary
