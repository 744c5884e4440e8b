"""Immutable build context.

Everything an adapter needs to know about the run (paths, toolchain
flags, job count, packaging metadata, retry policy) is captured once
at start-up in a frozen BuildContext and passed explicitly to every
step. Nothing downstream reads settings or the process environment.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stagebuild.components.schema import ManifestSchema
    from stagebuild.config import Settings

LOGS_DIRNAME = "logs"
DOWNLOADS_DIRNAME = "downloads"
SOURCES_DIRNAME = "sources"
STAGING_DIRNAME = "staging"
DEBS_DIRNAME = "debs"


@dataclass(frozen=True)
class BuildContext:
    """Configuration for one orchestrator run.

    Attributes:
        build_root: Working area for all run state.
        prefix: Live installation prefix.
        jobs: Parallel jobs for build tools.
        cflags: C compiler flags.
        cxxflags: C++ compiler flags.
        ldflags: Linker flags.
        architecture: Package architecture.
        maintainer: Package maintainer field.
        package_prefix: Prefix for package names.
        manifest_description: Fallback text for package descriptions.
        cmake_flags: Flags added to every cmake configure step.
        fetch_attempts: Download attempts per source.
        fetch_retry_delay: Seconds between download attempts.
        fetch_timeout: Stall timeout per download or clone attempt.
        enforce_dependencies: Honour ``requires`` lists.
        package_artifacts: Produce .deb archives.
        log_tail_lines: Lines of build log surfaced on failure.
        base_env: Environment inherited by every build step.
    """

    build_root: Path
    prefix: Path
    jobs: int = 1
    cflags: str = ""
    cxxflags: str = ""
    ldflags: str = ""
    architecture: str = "aarch64"
    maintainer: str = ""
    package_prefix: str = ""
    manifest_description: str | None = None
    cmake_flags: tuple[str, ...] = ()
    fetch_attempts: int = 3
    fetch_retry_delay: float = 2.0
    fetch_timeout: float = 60.0
    enforce_dependencies: bool = False
    package_artifacts: bool = True
    log_tail_lines: int = 50
    base_env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        manifest: ManifestSchema | None = None,
        architecture: str | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> BuildContext:
        """Freeze settings and manifest defaults into a context.

        Args:
            settings: Loaded settings.
            manifest: Manifest supplying package prefix and cmake defaults.
            architecture: Resolved package architecture (overrides settings).
            base_env: Environment for build steps (snapshot of os.environ
                if not given).
        """
        env = dict(os.environ if base_env is None else base_env)
        return cls(
            build_root=settings.build_root,
            prefix=settings.prefix,
            jobs=settings.jobs,
            cflags=settings.cflags,
            cxxflags=settings.cxxflags,
            ldflags=settings.ldflags,
            architecture=architecture or settings.architecture or "aarch64",
            maintainer=settings.maintainer,
            package_prefix=manifest.package_prefix if manifest else "",
            manifest_description=manifest.description if manifest else None,
            cmake_flags=tuple(manifest.cmake_flags) if manifest else (),
            fetch_attempts=settings.fetch_attempts,
            fetch_retry_delay=settings.fetch_retry_delay,
            fetch_timeout=settings.fetch_timeout,
            enforce_dependencies=settings.enforce_dependencies,
            package_artifacts=settings.package_artifacts,
            log_tail_lines=settings.log_tail_lines,
            base_env=MappingProxyType(env),
        )

    @property
    def logs_dir(self) -> Path:
        return self.build_root / LOGS_DIRNAME

    @property
    def downloads_dir(self) -> Path:
        return self.build_root / DOWNLOADS_DIRNAME

    @property
    def sources_dir(self) -> Path:
        return self.build_root / SOURCES_DIRNAME

    @property
    def staging_root(self) -> Path:
        return self.build_root / STAGING_DIRNAME

    @property
    def debs_dir(self) -> Path:
        return self.build_root / DEBS_DIRNAME

    def stage_dir(self, name: str) -> Path:
        """Stage directory for a component."""
        return self.staging_root / name

    def log_path(self, name: str) -> Path:
        """Log file for a component."""
        return self.logs_dir / f"{name}.log"

    def ensure_layout(self) -> None:
        """Create the build root directory layout."""
        for directory in (
            self.build_root,
            self.logs_dir,
            self.downloads_dir,
            self.sources_dir,
            self.staging_root,
            self.debs_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def step_env(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        """Environment for a build step.

        Toolchain flags and job count are layered over the base
        environment; component-specific variables go on top.
        """
        env = dict(self.base_env)
        env.update(
            {
                "CFLAGS": self.cflags,
                "CXXFLAGS": self.cxxflags,
                "LDFLAGS": self.ldflags,
                "MAKEFLAGS": f"-j{self.jobs}",
            }
        )
        if extra:
            env.update(extra)
        return env


__all__ = ["BuildContext"]
