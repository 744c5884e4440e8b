"""Tests for configuration module."""

import json
import os
import tomllib
from pathlib import Path
from unittest.mock import patch

from stagebuild.config import (
    DEFAULT_CFLAGS,
    TERMUX_ROOT,
    Settings,
    get_settings,
    print_settings_json,
)


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self, monkeypatch) -> None:
        """Settings should have sensible defaults."""
        monkeypatch.delenv("STAGEBUILD_BUILD_ROOT", raising=False)
        monkeypatch.delenv("STAGEBUILD_HOST_CHECK_PATH", raising=False)
        settings = Settings()

        assert settings.build_root == Path.home() / "Plasma-Build"
        assert settings.manifest is None
        assert settings.jobs >= 1
        assert settings.cflags == DEFAULT_CFLAGS
        assert settings.cxxflags == settings.cflags
        assert settings.fetch_attempts == 3
        assert settings.fetch_retry_delay == 2.0
        assert settings.fetch_timeout == 60
        assert settings.enforce_dependencies is False
        assert settings.package_artifacts is True
        assert settings.host_check_path == TERMUX_ROOT
        assert settings.log_level == "INFO"

    def test_prefix_follows_environment(self) -> None:
        """The live prefix should default to $PREFIX."""
        with patch.dict(os.environ, {"PREFIX": "/opt/prefix"}):
            assert Settings().prefix == Path("/opt/prefix")

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "STAGEBUILD_BUILD_ROOT": "/tmp/stage-root",
                "STAGEBUILD_JOBS": "4",
                "STAGEBUILD_ENFORCE_DEPENDENCIES": "true",
                "STAGEBUILD_LOG_LEVEL": "DEBUG",
            },
        ):
            settings = Settings()
            assert settings.build_root == Path("/tmp/stage-root")
            assert settings.jobs == 4
            assert settings.enforce_dependencies is True
            assert settings.log_level == "DEBUG"

    def test_empty_host_check_disables_it(self) -> None:
        """An empty host check path should mean no check."""
        with patch.dict(os.environ, {"STAGEBUILD_HOST_CHECK_PATH": ""}):
            assert Settings().host_check_path is None

    def test_init_overrides_env(self) -> None:
        """Explicit values should win over environment variables."""
        with patch.dict(os.environ, {"STAGEBUILD_JOBS": "4"}):
            assert Settings(jobs=2).jobs == 2

    def test_effective_db_url_defaults_into_build_root(self) -> None:
        """History should live inside the build root unless configured."""
        settings = Settings(build_root=Path("/tmp/br"))
        assert settings.effective_db_url == "sqlite:////tmp/br/history.sqlite"

        settings = Settings(db_url="sqlite:///:memory:")
        assert settings.effective_db_url == "sqlite:///:memory:"


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings()
        parsed = json.loads(print_settings_json(settings))

        assert "build_root" in parsed
        assert "prefix" in parsed
        assert "fetch_attempts" in parsed
        assert "enforce_dependencies" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        parsed = json.loads(print_settings_json())
        assert "build_root" in parsed


class TestProjectMetadata:
    """Test the declared interpreter floor."""

    def test_python_floor_supports_tar_filters(self) -> None:
        """Safe tar extraction filters need Python 3.11.4 or newer."""
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        with pyproject.open("rb") as f:
            project = tomllib.load(f)["project"]
        assert project["requires-python"] == ">=3.11.4"
