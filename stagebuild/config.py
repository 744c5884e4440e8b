"""Configuration settings for stagebuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Termux keeps its whole userland below this directory
TERMUX_ROOT = Path("/data/data/com.termux")

# Tuned for Snapdragon 860 (Cortex-A76/A55, ARMv8.2-A)
DEFAULT_CFLAGS = "-march=armv8.2-a+crypto+dotprod -mtune=cortex-a76 -O3 -pipe -ffast-math"
DEFAULT_LDFLAGS = "-Wl,-O3 -Wl,--as-needed"


def _default_build_root() -> Path:
    """Return the default build root."""
    return Path.home() / "Plasma-Build"


def _default_prefix() -> Path:
    """Return the live installation prefix (``$PREFIX`` under Termux)."""
    return Path(os.environ.get("PREFIX", str(TERMUX_ROOT / "files" / "usr")))


def _default_jobs() -> int:
    """Return the default build parallelism."""
    return os.cpu_count() or 1


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the STAGEBUILD_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="STAGEBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    build_root: Path = Field(
        default_factory=_default_build_root,
        description="Working area for downloads, sources, staging, logs and markers",
    )
    prefix: Path = Field(
        default_factory=_default_prefix,
        description="Live installation prefix components are configured against",
    )
    manifest: Path | None = Field(
        default=None,
        description="Component manifest (uses the bundled plasma6 manifest if not set)",
    )
    db_url: str | None = Field(
        default=None,
        description="Build history database URL (defaults to a SQLite file in build_root)",
    )

    # Toolchain
    jobs: int = Field(
        default_factory=_default_jobs,
        ge=1,
        description="Parallel jobs passed to the build tools",
    )
    cflags: str = Field(default=DEFAULT_CFLAGS, description="C compiler flags")
    cxxflags: str = Field(default=DEFAULT_CFLAGS, description="C++ compiler flags")
    ldflags: str = Field(default=DEFAULT_LDFLAGS, description="Linker flags")

    # Packaging
    architecture: str | None = Field(
        default=None,
        description="Package architecture (detected with dpkg if not set)",
    )
    maintainer: str = Field(
        default="Termux Plasma Builder <builder@localhost>",
        description="Maintainer field written to package descriptors",
    )
    package_artifacts: bool = Field(
        default=True,
        description="Wrap each staged component into a .deb archive",
    )

    # Fetching
    fetch_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum download attempts per source",
    )
    fetch_retry_delay: float = Field(
        default=2.0,
        ge=0,
        description="Delay between download attempts in seconds",
    )
    fetch_timeout: int = Field(
        default=60,
        ge=1,
        description="Seconds a download or git clone may stall before the attempt fails",
    )

    # Operational modes
    enforce_dependencies: bool = Field(
        default=False,
        description="Sort components by their 'requires' lists and skip dependents of failures",
    )
    host_check_path: Path | None = Field(
        default=TERMUX_ROOT,
        description="Directory that must exist on the host (disable with an empty value)",
    )
    install_prerequisites: bool = Field(
        default=True,
        description="Install manifest prerequisites with the package manager",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_tail_lines: int = Field(
        default=50,
        ge=0,
        description="Build log lines shown when a component fails",
    )

    @field_validator("host_check_path", "manifest", mode="before")
    @classmethod
    def empty_path_is_none(cls, v: object) -> object:
        """Treat an empty string as an unset path."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def effective_db_url(self) -> str:
        """Database URL, derived from build_root unless set explicitly."""
        if self.db_url:
            return self.db_url
        return f"sqlite:///{self.build_root / 'history.sqlite'}"


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_CFLAGS", "DEFAULT_LDFLAGS", "Settings", "get_settings", "print_settings_json"]
