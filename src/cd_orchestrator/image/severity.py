"""Severity ladder and the publish gate."""

from __future__ import annotations

from typing import Sequence

from cd_orchestrator.models import Finding, ScanResult

SEVERITY_ORDER: tuple[str, ...] = ("UNKNOWN", "LOW", "MEDIUM", "HIGH", "CRITICAL")
DEFAULT_BLOCKING_SEVERITY = "CRITICAL"
_RANKS = {name: rank for rank, name in enumerate(SEVERITY_ORDER)}


def normalize_severity(value: str | None) -> str:
    """Return the canonical severity name; unrecognized values map to UNKNOWN."""

    candidate = (value or "").strip().upper()
    return candidate if candidate in _RANKS else "UNKNOWN"


def severity_rank(value: str | None) -> int:
    return _RANKS[normalize_severity(value)]


def evaluate_gate(
    findings: Sequence[Finding],
    blocking_severity: str = DEFAULT_BLOCKING_SEVERITY,
) -> ScanResult:
    """Pass the gate iff no finding is at or above the blocking severity."""

    threshold = blocking_severity.strip().upper()
    if threshold not in _RANKS:
        raise ValueError(f"Unknown blocking severity: {blocking_severity}")
    threshold_rank = _RANKS[threshold]
    blocking = tuple(item for item in findings if severity_rank(item.severity) >= threshold_rank)
    return ScanResult(
        findings=tuple(findings),
        blocking_severity=threshold,
        gate_passed=not blocking,
        blocking_findings=blocking,
    )
