"""Shared utility helpers."""

from cd_orchestrator.utils.commands import CommandResult, run_command
from cd_orchestrator.utils.io import write_json_atomically, write_parquet_atomically, write_text_atomically
from cd_orchestrator.utils.time_utils import new_run_id, now_utc

__all__ = [
    "CommandResult",
    "run_command",
    "write_json_atomically",
    "write_parquet_atomically",
    "write_text_atomically",
    "new_run_id",
    "now_utc",
]
