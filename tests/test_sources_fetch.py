"""Tests for source retrieval.

These tests use mocked HTTP responses (respx) and mocked subprocess
calls, so no network or git client is needed.
"""

import tarfile
from io import BytesIO
from unittest.mock import MagicMock, patch

import httpx
import pytest
import respx

from conftest import tarball_bytes, write_tarball
from stagebuild.sources.fetch import (
    FetchError,
    IntegrityError,
    archive_top_directory,
    cache_path_for,
    clone_with_retry,
    compose_clone_command,
    download_file,
    download_with_retry,
    extract_archive,
    fetch_archive,
    is_supported_archive,
    name_matches,
)

URL = "https://example.com/foo-1.0.tar.gz"


class TestCachePathFor:
    """Tests for cache_path_for."""

    def test_keyed_by_name_version_and_filename(self, tmp_path):
        """Cache entries should combine name, version and filename."""
        path = cache_path_for(tmp_path, "foo", "1.0", "v1.0.tar.gz")
        assert path == tmp_path / "foo-1.0-v1.0.tar.gz"


class TestDownloadFile:
    """Tests for download_file."""

    @respx.mock
    def test_successful_download(self, tmp_path):
        """Should download content and return its size."""
        respx.get(URL).mock(return_value=httpx.Response(200, content=b"payload"))
        dest = tmp_path / "out" / "foo.tar.gz"

        with httpx.Client() as client:
            size = download_file(client, URL, dest, timeout=5)

        assert size == 7
        assert dest.read_bytes() == b"payload"

    @respx.mock
    def test_http_error(self, tmp_path):
        """Should raise FetchError with http_error code."""
        respx.get(URL).mock(return_value=httpx.Response(404))

        with httpx.Client() as client, pytest.raises(FetchError) as exc_info:
            download_file(client, URL, tmp_path / "x", timeout=5)
        assert exc_info.value.code == "http_error"

    @respx.mock
    def test_timeout(self, tmp_path):
        """Should raise FetchError with timeout code."""
        respx.get(URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with httpx.Client() as client, pytest.raises(FetchError) as exc_info:
            download_file(client, URL, tmp_path / "x", timeout=5)
        assert exc_info.value.code == "timeout"

    @respx.mock
    def test_network_error(self, tmp_path):
        """Should raise FetchError with network_error code."""
        respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))

        with httpx.Client() as client, pytest.raises(FetchError) as exc_info:
            download_file(client, URL, tmp_path / "x", timeout=5)
        assert exc_info.value.code == "network_error"


class TestDownloadWithRetry:
    """Tests for download_with_retry."""

    @respx.mock
    def test_first_attempt_succeeds(self, tmp_path):
        """A working URL should be fetched once without sleeping."""
        route = respx.get(URL).mock(return_value=httpx.Response(200, content=b"data"))
        sleep = MagicMock()
        dest = tmp_path / "foo.tar.gz"

        with httpx.Client() as client:
            result = download_with_retry(client, URL, dest, 3, 2.0, 5, sleep=sleep)

        assert route.call_count == 1
        assert result.attempts == 1
        assert result.from_cache is False
        assert dest.read_bytes() == b"data"
        sleep.assert_not_called()

    @respx.mock
    def test_retries_then_succeeds(self, tmp_path):
        """Transient failures should be retried with the fixed delay."""
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(200, content=b"data"),
            ]
        )
        sleep = MagicMock()

        with httpx.Client() as client:
            result = download_with_retry(client, URL, tmp_path / "f", 3, 2.0, 5, sleep=sleep)

        assert route.call_count == 2
        assert result.attempts == 2
        sleep.assert_called_once_with(2.0)

    @respx.mock
    def test_retry_bound(self, tmp_path):
        """A source failing every time is tried exactly the configured count."""
        route = respx.get(URL).mock(return_value=httpx.Response(500))
        sleep = MagicMock()
        dest = tmp_path / "foo.tar.gz"

        with httpx.Client() as client, pytest.raises(FetchError) as exc_info:
            download_with_retry(client, URL, dest, 3, 2.0, 5, sleep=sleep)

        assert route.call_count == 3
        assert sleep.call_count == 2
        assert exc_info.value.code == "fetch_exhausted"
        assert exc_info.value.attempts == 3
        assert not dest.exists()
        assert list(tmp_path.iterdir()) == []

    @respx.mock
    def test_empty_download_is_integrity_error(self, tmp_path):
        """A zero-byte body must not become a cache entry."""
        respx.get(URL).mock(return_value=httpx.Response(200, content=b""))
        dest = tmp_path / "foo.tar.gz"

        with httpx.Client() as client, pytest.raises(IntegrityError) as exc_info:
            download_with_retry(client, URL, dest, 3, 0, 5, sleep=MagicMock())

        assert exc_info.value.code == "empty_archive"
        assert not dest.exists()
        assert list(tmp_path.iterdir()) == []


class TestFetchArchive:
    """Tests for fetch_archive."""

    @respx.mock
    def test_cache_hit_skips_network(self, tmp_path):
        """A non-empty cache entry is reused without any request."""
        route = respx.get(URL).mock(return_value=httpx.Response(200, content=b"new"))
        cache = tmp_path / "foo-1.0-foo-1.0.tar.gz"
        cache.write_bytes(b"cached")

        with httpx.Client() as client:
            result = fetch_archive(client, URL, cache, 3, 0, 5, sleep=MagicMock())

        assert route.call_count == 0
        assert result.from_cache is True
        assert result.path == cache
        assert cache.read_bytes() == b"cached"

    @respx.mock
    def test_empty_cache_entry_is_refetched(self, tmp_path):
        """An empty cache file left by an older run is discarded."""
        route = respx.get(URL).mock(return_value=httpx.Response(200, content=b"fresh"))
        cache = tmp_path / "foo-1.0-foo-1.0.tar.gz"
        cache.write_bytes(b"")

        with httpx.Client() as client:
            result = fetch_archive(client, URL, cache, 3, 0, 5, sleep=MagicMock())

        assert route.call_count == 1
        assert result.from_cache is False
        assert cache.read_bytes() == b"fresh"


class TestArchiveHelpers:
    """Tests for archive inspection helpers."""

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("foo.tar.gz", True),
            ("foo.tar.xz", True),
            ("foo.TGZ", True),
            ("foo.tar.bz2", True),
            ("foo.zip", False),
            ("foo.ttf", False),
        ],
    )
    def test_is_supported_archive(self, tmp_path, filename, expected):
        """Only tar-based formats are supported."""
        assert is_supported_archive(tmp_path / filename) is expected

    def test_name_matches_is_loose(self):
        """The component name only has to appear in the directory name."""
        assert name_matches("foo-1.0", "foo")
        assert name_matches("KDE-Plasma-Workspace-6.4.2", "plasma-workspace")
        assert not name_matches("bar-1.0", "foo")

    def test_top_directory(self, tmp_path):
        """Should return the first path component inside the archive."""
        archive = write_tarball(tmp_path / "a.tar.gz", "foo-1.0")
        assert archive_top_directory(archive) == "foo-1.0"

    def test_top_directory_of_empty_archive(self, tmp_path):
        """An archive with no members is an integrity failure."""
        archive = tmp_path / "empty.tar.gz"
        with tarfile.open(archive, "w:gz"):
            pass
        with pytest.raises(IntegrityError) as exc_info:
            archive_top_directory(archive)
        assert exc_info.value.code == "empty_archive"

    def test_top_directory_of_garbage(self, tmp_path):
        """A file that is not a tarball is reported as corrupt."""
        archive = tmp_path / "garbage.tar.gz"
        archive.write_bytes(b"not a tarball at all")
        with pytest.raises(IntegrityError) as exc_info:
            archive_top_directory(archive)
        assert exc_info.value.code == "corrupt_archive"


class TestExtractArchive:
    """Tests for extract_archive."""

    def test_extracts_into_top_directory(self, tmp_path):
        """The source directory is named after the archive's contents."""
        archive = write_tarball(
            tmp_path / "v1.0.tar.gz", "foo-1.0", {"CMakeLists.txt": "project(foo)\n"}
        )
        dest = tmp_path / "sources"

        source_dir = extract_archive(archive, dest, "foo")

        assert source_dir == dest / "foo-1.0"
        assert (source_dir / "CMakeLists.txt").read_text() == "project(foo)\n"

    def test_replaces_previous_extraction(self, tmp_path):
        """Stale files from an earlier extraction are removed."""
        archive = write_tarball(tmp_path / "a.tar.gz", "foo-1.0")
        dest = tmp_path / "sources"
        stale = dest / "foo-1.0" / "stale.o"
        stale.parent.mkdir(parents=True)
        stale.write_text("old")

        extract_archive(archive, dest, "foo")

        assert not stale.exists()

    def test_name_mismatch_is_rejected(self, tmp_path):
        """An archive for a different component must not be extracted."""
        archive = write_tarball(tmp_path / "a.tar.gz", "bar-2.0")
        dest = tmp_path / "sources"

        with pytest.raises(IntegrityError) as exc_info:
            extract_archive(archive, dest, "foo")

        assert exc_info.value.code == "name_mismatch"
        assert "bar-2.0" in str(exc_info.value)
        assert not (dest / "bar-2.0").exists()

    def test_unsupported_format(self, tmp_path):
        """Non-tar files are rejected."""
        archive = tmp_path / "foo.zip"
        archive.write_bytes(b"PK")
        with pytest.raises(IntegrityError) as exc_info:
            extract_archive(archive, tmp_path / "sources", "foo")
        assert exc_info.value.code == "unsupported_format"

    def test_path_traversal_is_rejected(self, tmp_path):
        """Members escaping the destination are refused."""
        archive = tmp_path / "evil.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            for name in ("foo-1.0/ok.txt", "foo-1.0/../../escape.txt"):
                info = tarfile.TarInfo(name)
                info.size = 2
                tar.addfile(info, BytesIO(b"hi"))

        with pytest.raises(IntegrityError) as exc_info:
            extract_archive(archive, tmp_path / "sources", "foo")
        assert exc_info.value.code == "path_traversal"
        assert not (tmp_path / "escape.txt").exists()

    @respx.mock
    def test_download_then_extract(self, tmp_path):
        """A downloaded archive should extract like a local one."""
        respx.get(URL).mock(
            return_value=httpx.Response(200, content=tarball_bytes(tmp_path, "foo-1.0"))
        )
        cache = tmp_path / "downloads" / "foo-1.0-foo-1.0.tar.gz"

        with httpx.Client() as client:
            result = fetch_archive(client, URL, cache, 3, 0, 5, sleep=MagicMock())

        source_dir = extract_archive(result.path, tmp_path / "sources", "foo")
        assert (source_dir / "CMakeLists.txt").exists()


class TestCloneWithRetry:
    """Tests for git checkouts."""

    def test_compose_clone_command(self, tmp_path):
        """Clones are shallow and pinned to the ref when given."""
        cmd = compose_clone_command("https://e.com/a.git", tmp_path / "a", "v1.0")
        assert cmd == [
            "git",
            "clone",
            "--depth",
            "1",
            "--branch",
            "v1.0",
            "https://e.com/a.git",
            str(tmp_path / "a"),
        ]

    def test_compose_clone_command_without_ref(self, tmp_path):
        """The default branch is used when no ref is given."""
        cmd = compose_clone_command("https://e.com/a.git", tmp_path / "a")
        assert "--branch" not in cmd
        assert not any(arg.startswith("http.lowSpeed") for arg in cmd)

    def test_clone_succeeds(self, tmp_path):
        """A successful clone returns the checkout directory."""
        dest = tmp_path / "kwin"

        def fake_run(cmd, **kwargs):
            dest.mkdir()
            return MagicMock(returncode=0)

        with patch("stagebuild.sources.fetch.subprocess.run", side_effect=fake_run) as run:
            result = clone_with_retry("https://e.com/kwin.git", dest, None, 3, 0, 30)

        assert result == dest
        assert run.call_count == 1

    def test_clone_retry_bound(self, tmp_path):
        """Failing clones are attempted exactly the configured number of times."""
        sleep = MagicMock()
        with patch(
            "stagebuild.sources.fetch.subprocess.run",
            return_value=MagicMock(returncode=128),
        ) as run:
            with pytest.raises(FetchError) as exc_info:
                clone_with_retry(
                    "https://e.com/kwin.git", tmp_path / "kwin", "v1", 3, 2.0, 30, sleep=sleep
                )

        assert run.call_count == 3
        assert sleep.call_count == 2
        assert exc_info.value.code == "fetch_exhausted"
        assert not (tmp_path / "kwin").exists()

    def test_clone_stall_timeout(self, tmp_path):
        """A slow clone is only aborted by git when the transfer stalls."""
        dest = tmp_path / "kwin"

        def fake_run(cmd, **kwargs):
            dest.mkdir()
            return MagicMock(returncode=0)

        with patch("stagebuild.sources.fetch.subprocess.run", side_effect=fake_run) as run:
            clone_with_retry("https://e.com/kwin.git", dest, "v6.4.2", 3, 0, 60)

        cmd = run.call_args.args[0]
        assert "timeout" not in run.call_args.kwargs
        assert cmd[:6] == [
            "git",
            "-c",
            "http.lowSpeedLimit=1",
            "-c",
            "http.lowSpeedTime=60",
            "clone",
        ]
        assert cmd[-2:] == ["https://e.com/kwin.git", str(dest)]
