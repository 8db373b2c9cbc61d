"""Time and run identifier helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4


def now_utc() -> datetime:
    """Return current timezone-aware UTC timestamp."""

    return datetime.now(timezone.utc)


def new_run_id(prefix: str = "release-run") -> str:
    """Return a short unique run identifier."""

    return f"{prefix}-{uuid4().hex[:12]}"
