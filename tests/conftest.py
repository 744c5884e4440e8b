"""Shared fixtures for stagebuild tests."""

import io
import tarfile
from pathlib import Path

import pytest


def write_tarball(path: Path, top_dir: str, files: dict[str, str] | None = None) -> Path:
    """Write a gzipped tarball whose entries live under ``top_dir``."""
    files = files or {"CMakeLists.txt": "project(demo)\n"}
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tar:
        info = tarfile.TarInfo(top_dir)
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
        tar.addfile(info)
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{top_dir}/{name}")
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return path


def tarball_bytes(tmp_path: Path, top_dir: str, files: dict[str, str] | None = None) -> bytes:
    """Return the bytes of a tarball built by write_tarball."""
    return write_tarball(tmp_path / f"_{top_dir}.tar.gz", top_dir, files).read_bytes()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from the real build root and host checks."""
    monkeypatch.setenv("STAGEBUILD_BUILD_ROOT", str(tmp_path / "default-build-root"))
    monkeypatch.setenv("STAGEBUILD_HOST_CHECK_PATH", "")
    for var in ("STAGEBUILD_MANIFEST", "STAGEBUILD_DB_URL", "STAGEBUILD_JOBS"):
        monkeypatch.delenv(var, raising=False)
