"""Step runner for external build commands.

This module handles:
- The per-component log file every step writes into
- Executing build commands with subprocess
- Capturing stdout/stderr to the component log
- Turning non-zero exits into BuildStepError
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import TextIO

logger = logging.getLogger(__name__)


class BuildStepError(Exception):
    """Raised when a build step cannot be started or exits non-zero."""

    def __init__(
        self,
        message: str,
        step: str,
        exit_code: int | None = None,
        code: str = "build_step_failed",
    ) -> None:
        super().__init__(message)
        self.step = step
        self.exit_code = exit_code
        self.code = code


@dataclass
class StepResult:
    """Result of a successful build step.

    Attributes:
        step: Step name (configure, compile, install, ...).
        command: The command that was executed.
        exit_code: Process exit code.
        started_at: Step start time.
        finished_at: Step finish time.
    """

    step: str
    command: str
    exit_code: int
    started_at: datetime
    finished_at: datetime

    @property
    def duration(self) -> float:
        """Step duration in seconds."""
        return (self.finished_at - self.started_at).total_seconds()


class ComponentLog:
    """Log file capturing all output for one component attempt.

    The file is truncated when opened, so each attempt leaves exactly one
    log behind. Use as a context manager.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: TextIO | None = None

    def __enter__(self) -> ComponentLog:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("w", encoding="utf-8")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def handle(self) -> TextIO:
        """The open file, for use as subprocess stdout."""
        if self._file is None:
            raise RuntimeError(f"Log {self.path} is not open")
        return self._file

    def write(self, text: str) -> None:
        """Append text and flush so subprocess output stays ordered."""
        self.handle.write(text)
        self.handle.flush()

    def section(self, title: str) -> None:
        """Write a section banner."""
        self.write(f"\n=== {title} ===\n")

    def close(self) -> None:
        """Close the file if open."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def tail(self, lines: int = 50) -> list[str]:
        """Return the last lines of the log."""
        if self._file is not None:
            self._file.flush()
        return read_log_tail(self.path, lines)


def read_log_tail(path: Path, lines: int = 50) -> list[str]:
    """Return the last ``lines`` lines of a log file."""
    if lines <= 0 or not path.is_file():
        return []
    with path.open(encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]


def run_step(
    step: str,
    cmd: list[str],
    cwd: Path,
    log: ComponentLog,
    env: dict[str, str] | None = None,
) -> StepResult:
    """Run one build step with output captured to the component log.

    Args:
        step: Step name, used in log banners and errors.
        cmd: Command as a list of strings.
        cwd: Working directory.
        log: Open component log.
        env: Full environment for the child process (inherits if None).

    Returns:
        StepResult for a zero exit.

    Raises:
        BuildStepError: If the command cannot be started or exits non-zero.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Running %s step: %s (cwd=%s)", step, cmd_str, cwd)

    started_at = datetime.now(timezone.utc)
    log.section(step)
    log.write(f"# Command: {cmd_str}\n")
    log.write(f"# CWD: {cwd}\n")
    log.write(f"# Started: {started_at.isoformat()}\n\n")

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=log.handle,
            stderr=subprocess.STDOUT,
            env=env,
            check=False,
        )
    except OSError as e:
        log.write(f"\n# Failed to execute: {e}\n")
        raise BuildStepError(
            f"{step} step could not run {cmd[0]}: {e}",
            step=step,
            code="execution_error",
        ) from e

    finished_at = datetime.now(timezone.utc)
    duration = (finished_at - started_at).total_seconds()
    log.write(f"\n# Exit code: {result.returncode}\n")
    log.write(f"# Duration: {duration:.1f}s\n")

    if result.returncode != 0:
        raise BuildStepError(
            f"{step} step failed with exit code {result.returncode}",
            step=step,
            exit_code=result.returncode,
        )

    return StepResult(
        step=step,
        command=cmd_str,
        exit_code=result.returncode,
        started_at=started_at,
        finished_at=finished_at,
    )


__all__ = [
    "BuildStepError",
    "ComponentLog",
    "StepResult",
    "read_log_tail",
    "run_step",
]
