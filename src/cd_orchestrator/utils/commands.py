"""Thin wrapper around external CLI tools (docker, trivy, helm)."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

LOGGER = logging.getLogger(__name__)

COMMAND_NOT_FOUND_EXIT = 127


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration_sec: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, limit: int = 2000) -> str:
        """Return the last part of stderr (or stdout) for error messages."""

        text = (self.stderr or self.stdout or "").strip()
        return text[-limit:]


def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    input_text: str | None = None,
    timeout_sec: float | None = None,
    logger: logging.Logger | None = None,
) -> CommandResult:
    """Run a command without a shell and capture its output.

    A missing executable or an expired timeout is reported as a failed
    CommandResult rather than raised, so callers map every tool failure to
    their own error type in one place. Only ``args[0]`` is logged; argument
    lists may carry image references but never credentials.
    """

    effective_logger = logger or LOGGER
    full_env = os.environ.copy()
    if env:
        full_env.update(env)

    command = tuple(str(part) for part in args)
    effective_logger.debug("command.start tool=%s args=%s cwd=%s", command[0], command[1:], cwd)
    started = time.monotonic()
    try:
        completed = subprocess.run(
            command,
            cwd=cwd,
            env=full_env,
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout_sec,
            check=False,
        )
    except FileNotFoundError as exc:
        duration = time.monotonic() - started
        effective_logger.error("command.not_found tool=%s", command[0])
        return CommandResult(command, COMMAND_NOT_FOUND_EXIT, "", str(exc), duration)
    except subprocess.TimeoutExpired:
        duration = time.monotonic() - started
        effective_logger.error("command.timeout tool=%s timeout_sec=%s", command[0], timeout_sec)
        return CommandResult(command, -1, "", f"{command[0]} timed out after {timeout_sec}s", duration)

    duration = time.monotonic() - started
    result = CommandResult(command, completed.returncode, completed.stdout, completed.stderr, duration)
    if result.ok:
        effective_logger.debug("command.ok tool=%s duration_sec=%.2f", command[0], duration)
    else:
        effective_logger.warning(
            "command.failed tool=%s exit=%s duration_sec=%.2f",
            command[0],
            result.returncode,
            duration,
        )
    return result
