"""Text patches applied to extracted sources before configuring.

Patches are small compatibility fixes, not required transformations:
a missing file or an absent search string is a silent no-op, and
applying a patch twice leaves the file as applying it once did.
"""

from __future__ import annotations

import logging
from pathlib import Path

from stagebuild.components.schema import PatchSpec
from stagebuild.types import PatchAction

logger = logging.getLogger(__name__)


def _replace(text: str, patch: PatchSpec) -> str:
    if patch.search in patch.replace:
        # Text already covered by an earlier replacement is left alone
        pieces = text.split(patch.replace)
        return patch.replace.join(p.replace(patch.search, patch.replace) for p in pieces)
    return text.replace(patch.search, patch.replace)


def _delete_lines(text: str, patch: PatchSpec) -> str:
    lines = text.splitlines(keepends=True)
    return "".join(line for line in lines if patch.search not in line)


def _append_after(text: str, patch: PatchSpec) -> str:
    lines = text.splitlines(keepends=True)
    insert = patch.replace.rstrip("\n")
    out: list[str] = []
    for i, line in enumerate(lines):
        out.append(line)
        if patch.search not in line:
            continue
        following = lines[i + 1].rstrip("\n") if i + 1 < len(lines) else None
        if following == insert:
            continue
        if not line.endswith("\n"):
            out[-1] = line + "\n"
        out.append(insert + "\n")
    return "".join(out)


_ACTIONS = {
    PatchAction.REPLACE: _replace,
    PatchAction.DELETE_LINE: _delete_lines,
    PatchAction.APPEND_AFTER: _append_after,
}


def apply_patch(source_dir: Path, patch: PatchSpec) -> bool:
    """Apply one text patch inside a source tree.

    Args:
        source_dir: Root of the extracted source.
        patch: Patch to apply.

    Returns:
        True if the file was changed, False if there was nothing to do.
    """
    target = source_dir / patch.file
    if not target.is_file():
        logger.debug("Patch target %s not found, skipping", patch.file)
        return False

    text = target.read_text(encoding="utf-8", errors="surrogateescape")
    if patch.search not in text:
        logger.debug("Search text not in %s, skipping", patch.file)
        return False

    patched = _ACTIONS[patch.action](text, patch)
    if patched == text:
        return False

    target.write_text(patched, encoding="utf-8", errors="surrogateescape")
    logger.info("Patched %s (%s)", patch.file, patch.action.value)
    return True


def apply_patches(source_dir: Path, patches: list[PatchSpec]) -> int:
    """Apply patches in order, returning how many changed a file."""
    return sum(1 for patch in patches if apply_patch(source_dir, patch))


__all__ = ["apply_patch", "apply_patches"]
