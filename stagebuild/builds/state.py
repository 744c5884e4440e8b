"""Completion state stores.

A completion marker records that a component finished building in a
given build root. Markers are only ever created or wiped wholesale,
never edited. The orchestrator talks to a CompletionStore so tests can
inject state without touching the filesystem.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

MARKER_PREFIX = ".built_"


@runtime_checkable
class CompletionStore(Protocol):
    """Where completed component names are recorded."""

    def is_complete(self, name: str) -> bool: ...

    def mark_complete(self, name: str) -> None: ...

    def completed(self) -> list[str]: ...


class InMemoryCompletionStore:
    """Completion store backed by a set, for tests and dry runs."""

    def __init__(self, names: list[str] | None = None) -> None:
        self._names: set[str] = set(names or [])

    def is_complete(self, name: str) -> bool:
        return name in self._names

    def mark_complete(self, name: str) -> None:
        self._names.add(name)

    def completed(self) -> list[str]:
        return sorted(self._names)


class MarkerFileCompletionStore:
    """Completion store using ``.built_<name>`` files in the build root."""

    def __init__(self, build_root: Path) -> None:
        self.build_root = build_root

    def marker_path(self, name: str) -> Path:
        """Marker file for a component."""
        return self.build_root / f"{MARKER_PREFIX}{name}"

    def is_complete(self, name: str) -> bool:
        return self.marker_path(name).exists()

    def mark_complete(self, name: str) -> None:
        self.build_root.mkdir(parents=True, exist_ok=True)
        self.marker_path(name).touch()
        logger.debug("Marked %s complete", name)

    def completed(self) -> list[str]:
        if not self.build_root.is_dir():
            return []
        return sorted(
            p.name[len(MARKER_PREFIX):]
            for p in self.build_root.glob(f"{MARKER_PREFIX}*")
            if p.is_file()
        )


__all__ = [
    "CompletionStore",
    "InMemoryCompletionStore",
    "MARKER_PREFIX",
    "MarkerFileCompletionStore",
]
