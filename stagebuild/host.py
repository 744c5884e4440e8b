"""Host environment checks and prerequisite installation.

This module handles:
- The host precondition check that gates every build run
- Package architecture detection
- Installing prerequisite packages with the system package manager
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

FALLBACK_ARCHITECTURE = "aarch64"


class HostPreconditionError(Exception):
    """Raised when the host cannot run builds at all."""

    def __init__(self, message: str, code: str = "host_precondition_failed") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class PrerequisiteReport:
    """Outcome of installing prerequisite packages."""

    already_installed: list[str] = field(default_factory=list)
    installed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def check_host(required_path: Path | None) -> None:
    """Verify the host environment before any component is attempted.

    Args:
        required_path: Directory that must exist on a supported host, or
            None to skip the check.

    Raises:
        HostPreconditionError: If the directory is missing.
    """
    if required_path is None:
        return
    if not required_path.is_dir():
        raise HostPreconditionError(
            f"This tool must be run in Termux ({required_path} not found)",
        )


def detect_architecture() -> str:
    """Return the package architecture reported by dpkg.

    Falls back to aarch64 when dpkg is missing or fails.
    """
    try:
        result = subprocess.run(
            ["dpkg", "--print-architecture"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return FALLBACK_ARCHITECTURE
    arch = result.stdout.strip()
    if result.returncode != 0 or not arch:
        return FALLBACK_ARCHITECTURE
    return arch


def is_package_installed(package: str) -> bool:
    """Check whether dpkg reports a package as installed."""
    try:
        result = subprocess.run(
            ["dpkg", "-s", package],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return False
    if result.returncode != 0:
        return False
    return "Status: install ok installed" in result.stdout


def install_prerequisites(packages: list[str], log_dir: Path) -> PrerequisiteReport:
    """Install missing prerequisite packages with ``pkg install -y``.

    Each installation writes its output to ``<log_dir>/<package>.log``.
    Failures are logged as warnings and never abort the run; a missing
    prerequisite shows up later as a component build failure.

    Args:
        packages: Package names.
        log_dir: Directory for per-package logs.

    Returns:
        PrerequisiteReport listing what happened to each package.
    """
    report = PrerequisiteReport()
    log_dir.mkdir(parents=True, exist_ok=True)

    for package in packages:
        if is_package_installed(package):
            logger.debug("%s already installed", package)
            report.already_installed.append(package)
            continue

        logger.info("Installing %s...", package)
        log_path = log_dir / f"{package}.log"
        try:
            with log_path.open("w", encoding="utf-8") as log_file:
                result = subprocess.run(
                    ["pkg", "install", "-y", package],
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    check=False,
                )
            ok = result.returncode == 0
        except OSError as e:
            logger.warning("Could not run package manager for %s: %s", package, e)
            ok = False

        if ok:
            report.installed.append(package)
        else:
            logger.warning("Failed to install %s (see %s)", package, log_path)
            report.failed.append(package)

    return report


__all__ = [
    "FALLBACK_ARCHITECTURE",
    "HostPreconditionError",
    "PrerequisiteReport",
    "check_host",
    "detect_architecture",
    "install_prerequisites",
    "is_package_installed",
]
