"""Stage directory handling.

A stage directory receives a component's ``make install`` output via
DESTDIR, so its contents are rooted like the filesystem: files meant
for ``$PREFIX/lib`` land in ``<stage>/$PREFIX/lib``. This module
creates stage directories, measures them for package metadata and
merges a stage into the live prefix.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

# Package control data lives beside the staged tree, not inside the prefix
CONTROL_DIRNAME = "DEBIAN"


class StagingError(Exception):
    """Raised when a stage directory cannot be prepared or merged."""

    def __init__(self, message: str, code: str = "staging_error") -> None:
        super().__init__(message)
        self.code = code


def prepare_stage_dir(stage_dir: Path) -> Path:
    """Create an empty stage directory, removing any previous contents."""
    if stage_dir.exists():
        shutil.rmtree(stage_dir)
    stage_dir.mkdir(parents=True)
    return stage_dir


def staged_prefix(stage_dir: Path, prefix: Path) -> Path:
    """Return where ``prefix`` appears inside a stage directory."""
    return stage_dir / prefix.relative_to(prefix.anchor)


def is_stage_empty(stage_dir: Path) -> bool:
    """True if the stage holds no installed files."""
    if not stage_dir.is_dir():
        return True
    return not any(
        p for p in stage_dir.rglob("*")
        if not p.is_dir() and CONTROL_DIRNAME not in p.relative_to(stage_dir).parts
    )


def installed_size_kib(stage_dir: Path) -> int:
    """Compute the installed size of a stage in KiB.

    Each file is rounded up to a whole KiB, approximating ``du -sk``.
    Package control data is not counted.
    """
    total = 0
    for root, dirs, files in os.walk(stage_dir):
        if Path(root) == stage_dir and CONTROL_DIRNAME in dirs:
            dirs.remove(CONTROL_DIRNAME)
        for filename in files:
            size = os.lstat(os.path.join(root, filename)).st_size
            total += (size + 1023) // 1024
    return total


def _merge_tree(src: Path, dst: Path) -> int:
    copied = 0
    dst.mkdir(parents=True, exist_ok=True)
    for entry in os.scandir(src):
        target = dst / entry.name
        if entry.is_symlink():
            if target.is_symlink() or target.is_file():
                target.unlink()
            os.symlink(os.readlink(entry.path), target)
            copied += 1
        elif entry.is_dir():
            copied += _merge_tree(Path(entry.path), target)
        else:
            if target.is_symlink():
                target.unlink()
            shutil.copy2(entry.path, target)
            copied += 1
    return copied


def install_stage_into_prefix(stage_dir: Path, prefix: Path) -> int:
    """Copy a component's staged prefix tree over the live prefix.

    Later components configure against the live prefix, so anything they
    need from an earlier component has to be merged in first.

    Args:
        stage_dir: The component's stage directory.
        prefix: Live installation prefix.

    Returns:
        Number of files and links copied (0 if nothing was staged under
        the prefix).

    Raises:
        StagingError: If copying fails.
    """
    source = staged_prefix(stage_dir, prefix)
    if not source.is_dir():
        logger.warning("Stage prefix not found (expected at %s)", source)
        return 0

    logger.info("Installing %s into %s", stage_dir.name, prefix)
    try:
        copied = _merge_tree(source, prefix)
    except OSError as e:
        raise StagingError(
            f"Failed to install {stage_dir.name} into {prefix}: {e}",
            code="prefix_install_error",
        ) from e
    logger.debug("Copied %d entries from %s", copied, source)
    return copied


__all__ = [
    "CONTROL_DIRNAME",
    "StagingError",
    "install_stage_into_prefix",
    "installed_size_kib",
    "is_stage_empty",
    "prepare_stage_dir",
    "staged_prefix",
]
