"""Debian package creation from stage directories.

This module handles:
- Package metadata and the DEBIAN/control descriptor
- Deterministic package file names
- Running dpkg-deb (under fakeroot when available)

Packaging is best-effort: a PackagingError is reported by the caller
but never turns a successful build into a failed one.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from stagebuild.builds.runner import BuildStepError, ComponentLog, run_step
from stagebuild.builds.staging import CONTROL_DIRNAME, installed_size_kib

logger = logging.getLogger(__name__)

DEFAULT_SECTION = "misc"
DEFAULT_PRIORITY = "optional"

_INVALID_PACKAGE_CHARS = re.compile(r"[^a-z0-9+.\-]")


class PackagingError(Exception):
    """Raised when a package cannot be produced from a stage."""

    def __init__(self, message: str, code: str = "packaging_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class PackageMetadata:
    """Fields written to the package descriptor.

    Attributes:
        package: Package name (already prefixed).
        version: Debian-compatible version.
        architecture: Target architecture.
        maintainer: Maintainer string.
        installed_size: Installed size in KiB.
        description: One-line summary.
        depends: Package dependencies.
        section: Archive section.
        priority: Package priority.
    """

    package: str
    version: str
    architecture: str
    maintainer: str
    installed_size: int
    description: str
    depends: list[str] = field(default_factory=list)
    section: str = DEFAULT_SECTION
    priority: str = DEFAULT_PRIORITY


def package_name(name: str, prefix: str = "") -> str:
    """Build a valid Debian package name from a component name."""
    return _INVALID_PACKAGE_CHARS.sub("-", f"{prefix}{name}".lower())


def debian_version(version: str) -> str:
    """Make a version string acceptable to dpkg.

    Versions must start with a digit; anything else (branch names from
    git sources, for example) is prefixed with ``0~`` so it sorts below
    every released version.
    """
    version = version.strip().replace("_", "~")
    if not version or not version[0].isdigit():
        return f"0~{version or 'unknown'}"
    return version


def package_filename(package: str, version: str, architecture: str) -> str:
    """Return ``<package>_<version>_<arch>.deb``."""
    return f"{package}_{version}_{architecture}.deb"


def render_control(meta: PackageMetadata) -> str:
    """Render the DEBIAN/control text for a package."""
    lines = [
        f"Package: {meta.package}",
        f"Version: {meta.version}",
        f"Section: {meta.section}",
        f"Priority: {meta.priority}",
        f"Architecture: {meta.architecture}",
        f"Maintainer: {meta.maintainer}",
        f"Installed-Size: {meta.installed_size}",
    ]
    if meta.depends:
        lines.append(f"Depends: {', '.join(meta.depends)}")
    lines.append(f"Description: {meta.description}")
    lines.append(" Built automatically by stagebuild")
    return "\n".join(lines) + "\n"


def write_control_file(stage_dir: Path, meta: PackageMetadata) -> Path:
    """Write DEBIAN/control into a stage directory.

    Returns:
        Path of the control file.
    """
    control_dir = stage_dir / CONTROL_DIRNAME
    control_dir.mkdir(parents=True, exist_ok=True)
    control_dir.chmod(0o755)
    control = control_dir / "control"
    control.write_text(render_control(meta), encoding="utf-8")
    control.chmod(0o644)
    return control


def compose_package_command(stage_dir: Path, output_path: Path) -> list[str]:
    """Compose the dpkg-deb command, wrapped in fakeroot if installed."""
    cmd = ["dpkg-deb", "--build", str(stage_dir), str(output_path)]
    if shutil.which("fakeroot"):
        cmd.insert(0, "fakeroot")
    return cmd


def build_package(
    stage_dir: Path,
    meta: PackageMetadata,
    output_dir: Path,
    log: ComponentLog,
) -> Path:
    """Produce a .deb archive from a populated stage directory.

    The installed size is measured before the descriptor is written, so
    the caller may pass any placeholder value in ``meta.installed_size``.

    Args:
        stage_dir: Stage directory holding the installed tree.
        meta: Package metadata.
        output_dir: Directory receiving the archive.
        log: Component log that captures dpkg-deb output.

    Returns:
        Path of the created archive.

    Raises:
        PackagingError: If the descriptor cannot be written or dpkg-deb fails.
    """
    meta.installed_size = installed_size_kib(stage_dir)
    try:
        write_control_file(stage_dir, meta)
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PackagingError(
            f"Could not write package descriptor for {meta.package}: {e}",
            code="control_write_error",
        ) from e

    output_path = output_dir / package_filename(meta.package, meta.version, meta.architecture)
    try:
        run_step("package", compose_package_command(stage_dir, output_path), stage_dir, log)
    except BuildStepError as e:
        output_path.unlink(missing_ok=True)
        raise PackagingError(
            f"Failed to create package for {meta.package}: {e}",
            code="dpkg_deb_failed",
        ) from e

    logger.info("Created package: %s", output_path)
    return output_path


__all__ = [
    "PackageMetadata",
    "PackagingError",
    "build_package",
    "compose_package_command",
    "debian_version",
    "package_filename",
    "package_name",
    "render_control",
    "write_control_file",
]
