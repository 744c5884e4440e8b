"""Shared type definitions for stagebuild.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class BuildStrategy(str, Enum):
    """Build-system driver used for a component."""

    CONFIGURE = "configure"
    NINJA = "ninja"
    MESON = "meson"
    ASSETS = "assets"


class PatchAction(str, Enum):
    """How a text patch edits its target file."""

    REPLACE = "replace"
    DELETE_LINE = "delete-line"
    APPEND_AFTER = "append-after"


class BuildStatus(str, Enum):
    """Status of a recorded component build attempt."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ComponentOutcome(str, Enum):
    """What happened to a component during one orchestrator run."""

    BUILT = "built"
    SKIPPED = "skipped"
    FAILED = "failed"
    DEPENDENCY_FAILED = "dependency_failed"


@dataclass
class ComponentResult:
    """Result of processing a single component."""

    name: str
    version: str
    outcome: ComponentOutcome
    message: str = ""
    code: str | None = None
    log_path: Path | None = None
    package_path: Path | None = None
    log_tail: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True if the component is complete after this run."""
        return self.outcome in (ComponentOutcome.BUILT, ComponentOutcome.SKIPPED)


@dataclass
class RunSummary:
    """Aggregate result of one orchestrator run."""

    results: list[ComponentResult] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)

    def count(self, outcome: ComponentOutcome) -> int:
        """Number of components with the given outcome."""
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def failed(self) -> list[ComponentResult]:
        """Results for components that did not complete."""
        return [r for r in self.results if not r.ok]


__all__ = [
    "BuildStatus",
    "BuildStrategy",
    "ComponentOutcome",
    "ComponentResult",
    "PatchAction",
    "RunSummary",
]
