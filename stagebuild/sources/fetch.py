"""Source retrieval module.

This module handles:
- Download of source archives and asset files with bounded retry
- The download cache keyed by (name, version, archive filename)
- Extraction into a directory named after the archive's top-level entry
- Shallow git checkouts
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tarfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import httpx

logger = logging.getLogger(__name__)

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Archive suffixes tarfile can open transparently
SUPPORTED_ARCHIVE_SUFFIXES = (
    ".tar",
    ".tar.gz",
    ".tgz",
    ".tar.xz",
    ".txz",
    ".tar.bz2",
    ".tbz2",
)

PARTIAL_SUFFIX = ".part"


class FetchError(Exception):
    """Raised when a source cannot be retrieved."""

    def __init__(
        self,
        message: str,
        code: str = "fetch_error",
        attempts: int = 0,
    ) -> None:
        """Initialize FetchError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
            attempts: Number of attempts made before giving up.
        """
        super().__init__(message)
        self.code = code
        self.attempts = attempts


class IntegrityError(Exception):
    """Raised when retrieved content is unusable (empty, mismatched, unsafe)."""

    def __init__(self, message: str, code: str = "integrity_error") -> None:
        """Initialize IntegrityError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


@dataclass
class FetchResult:
    """Result of resolving a source archive or file."""

    path: Path
    size_bytes: int
    from_cache: bool = False
    attempts: int = 0


def cache_path_for(downloads_dir: Path, name: str, version: str, filename: str) -> Path:
    """Return the download cache path for a component archive.

    Args:
        downloads_dir: Download cache directory.
        name: Component name.
        version: Component version.
        filename: Archive filename from the URL.

    Returns:
        Path ``<downloads_dir>/<name>-<version>-<filename>``.
    """
    return downloads_dir / f"{name}-{version}-{filename}"


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> int:
    """Download a file in a single attempt.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Timeout for this attempt in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        Number of bytes written.

    Raises:
        FetchError: If the download fails.
    """
    try:
        with client.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            response.raise_for_status()

            total_bytes = 0
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    total_bytes += len(chunk)

            return total_bytes

    except httpx.HTTPStatusError as e:
        raise FetchError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise FetchError(
            f"Timeout downloading {url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise FetchError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e


def download_with_retry(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    attempts: int,
    delay: float,
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
) -> FetchResult:
    """Download a file, retrying a fixed number of times.

    The file is written to a ``.part`` sibling and renamed into place only
    once it is complete and non-empty, so a failed or empty download never
    leaves a file that a later run would mistake for a cache hit.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Final destination path.
        attempts: Maximum number of attempts.
        delay: Seconds to wait between attempts.
        timeout: Timeout per attempt in seconds.
        sleep: Sleep function (injectable for tests).

    Returns:
        FetchResult for the downloaded file.

    Raises:
        FetchError: If every attempt fails.
        IntegrityError: If the download completed but produced no data.
    """
    partial = dest_path.with_name(dest_path.name + PARTIAL_SUFFIX)
    last_error: FetchError | None = None

    for attempt in range(1, attempts + 1):
        try:
            logger.info("Downloading %s (attempt %d/%d)", url, attempt, attempts)
            size = download_file(client, url, partial, timeout=timeout)
            break
        except FetchError as e:
            last_error = e
            partial.unlink(missing_ok=True)
            if attempt < attempts:
                logger.warning("Download failed, retry %d/%d: %s", attempt, attempts, e)
                sleep(delay)
    else:
        dest_path.unlink(missing_ok=True)
        raise FetchError(
            f"Failed to download {url} after {attempts} attempts: {last_error}",
            code="fetch_exhausted",
            attempts=attempts,
        ) from last_error

    if size == 0 or not partial.is_file():
        partial.unlink(missing_ok=True)
        dest_path.unlink(missing_ok=True)
        raise IntegrityError(
            f"Downloaded file is empty or missing: {dest_path}",
            code="empty_archive",
        )

    partial.replace(dest_path)
    logger.info("Downloaded %s (%d bytes)", dest_path.name, size)
    return FetchResult(path=dest_path, size_bytes=size, attempts=attempt)


def fetch_archive(
    client: httpx.Client,
    url: str,
    cache_path: Path,
    attempts: int,
    delay: float,
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
) -> FetchResult:
    """Return a cached archive, downloading it on a cache miss.

    Args:
        client: HTTPX client instance.
        url: Archive URL.
        cache_path: Cache entry for this (name, version, filename).
        attempts: Maximum download attempts.
        delay: Seconds between attempts.
        timeout: Timeout per attempt in seconds.
        sleep: Sleep function (injectable for tests).

    Returns:
        FetchResult describing the archive.

    Raises:
        FetchError: If downloading fails on every attempt.
        IntegrityError: If the archive is empty.
    """
    if cache_path.is_file():
        size = cache_path.stat().st_size
        if size > 0:
            logger.info("Using cached %s", cache_path.name)
            return FetchResult(path=cache_path, size_bytes=size, from_cache=True)
        logger.warning("Discarding empty cache entry %s", cache_path.name)
        cache_path.unlink()

    return download_with_retry(
        client, url, cache_path, attempts=attempts, delay=delay, timeout=timeout, sleep=sleep
    )


def is_supported_archive(path: Path) -> bool:
    """Check whether the archive format can be extracted."""
    return path.name.lower().endswith(SUPPORTED_ARCHIVE_SUFFIXES)


def name_matches(directory_name: str, component_name: str) -> bool:
    """Loose match between an archive's top directory and a component name."""
    return component_name.lower() in directory_name.lower()


def archive_top_directory(archive_path: Path) -> str:
    """Read the first path component inside an archive.

    Raises:
        IntegrityError: If the archive is empty or unreadable.
    """
    try:
        with tarfile.open(archive_path, "r:*") as tar:
            first = tar.next()
    except tarfile.TarError as e:
        raise IntegrityError(
            f"Could not read {archive_path.name}: {e}",
            code="corrupt_archive",
        ) from e

    if first is None:
        raise IntegrityError(f"Archive {archive_path.name} is empty", code="empty_archive")

    parts = [p for p in Path(first.name).parts if p not in ("", ".")]
    if not parts:
        raise IntegrityError(
            f"Could not determine directory name from {archive_path.name}",
            code="no_top_directory",
        )
    return parts[0]


def extract_archive(
    archive_path: Path,
    dest_parent: Path,
    expected_name: str,
) -> Path:
    """Extract an archive into a fresh directory named after its contents.

    The target directory is the archive's own top-level entry under
    ``dest_parent``. Archives whose top-level entry does not loosely
    contain ``expected_name`` are rejected before anything is written.

    Args:
        archive_path: Path to the archive file.
        dest_parent: Directory to extract into.
        expected_name: Component name the top directory must contain.

    Returns:
        Path to the extracted source directory.

    Raises:
        IntegrityError: On unsupported format, name mismatch, unsafe
            member paths or extraction failure.
    """
    if not is_supported_archive(archive_path):
        raise IntegrityError(
            f"Unsupported archive format: {archive_path.name}",
            code="unsupported_format",
        )

    top_dir = archive_top_directory(archive_path)
    if not name_matches(top_dir, expected_name):
        raise IntegrityError(
            f"Archive directory '{top_dir}' does not match expected package '{expected_name}'",
            code="name_mismatch",
        )

    source_dir = dest_parent / top_dir
    if source_dir.exists():
        shutil.rmtree(source_dir)
    dest_parent.mkdir(parents=True, exist_ok=True)

    logger.info("Extracting %s to %s", archive_path.name, source_dir)

    try:
        with tarfile.open(archive_path, "r:*") as tar:
            members = tar.getmembers()
            for member in members:
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise IntegrityError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )
            tar.extractall(dest_parent, filter="data")
    except tarfile.TarError as e:
        raise IntegrityError(
            f"Failed to extract {archive_path.name}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise IntegrityError(
            f"OS error extracting {archive_path.name}: {e}",
            code="os_error",
        ) from e

    if not source_dir.is_dir():
        raise IntegrityError(
            f"Extracted directory not found: {source_dir}",
            code="missing_directory",
        )
    return source_dir


def compose_clone_command(
    url: str, dest: Path, ref: str | None = None, stall_timeout: float | None = None
) -> list[str]:
    """Compose a shallow ``git clone`` command.

    With ``stall_timeout`` git aborts a transfer that stays below one byte
    per second for that many seconds; a slow but moving clone is never cut
    off.
    """
    cmd = ["git"]
    if stall_timeout:
        cmd.extend(
            [
                "-c",
                "http.lowSpeedLimit=1",
                "-c",
                f"http.lowSpeedTime={max(1, int(stall_timeout))}",
            ]
        )
    cmd.extend(["clone", "--depth", "1"])
    if ref:
        cmd.extend(["--branch", ref])
    cmd.extend([url, str(dest)])
    return cmd


def clone_with_retry(
    url: str,
    dest: Path,
    ref: str | None,
    attempts: int,
    delay: float,
    timeout: float,
    log_file: TextIO | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Path:
    """Clone a git repository into a fresh directory, retrying on failure.

    Args:
        url: Repository URL.
        dest: Checkout directory (removed first if present).
        ref: Branch or tag to check out.
        attempts: Maximum clone attempts.
        delay: Seconds between attempts.
        timeout: Seconds a transfer may stall before git gives up.
        log_file: Where git output is written.
        sleep: Sleep function (injectable for tests).

    Returns:
        The checkout directory.

    Raises:
        FetchError: If every attempt fails.
    """
    cmd = compose_clone_command(url, dest, ref, stall_timeout=timeout)
    last_reason = ""

    for attempt in range(1, attempts + 1):
        if dest.exists():
            shutil.rmtree(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Cloning %s (attempt %d/%d)", url, attempt, attempts)
        try:
            result = subprocess.run(
                cmd,
                stdout=log_file if log_file is not None else subprocess.DEVNULL,
                stderr=subprocess.STDOUT,
                check=False,
            )
            if result.returncode == 0 and dest.is_dir():
                return dest
            last_reason = f"git exited with {result.returncode}"
        except OSError as e:
            last_reason = str(e)

        if attempt < attempts:
            logger.warning("Clone failed (%s), retry %d/%d", last_reason, attempt, attempts)
            sleep(delay)

    if dest.exists():
        shutil.rmtree(dest, ignore_errors=True)
    raise FetchError(
        f"Failed to clone {url} after {attempts} attempts: {last_reason}",
        code="fetch_exhausted",
        attempts=attempts,
    )


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "FetchError",
    "FetchResult",
    "IntegrityError",
    "SUPPORTED_ARCHIVE_SUFFIXES",
    "archive_top_directory",
    "cache_path_for",
    "clone_with_retry",
    "compose_clone_command",
    "download_file",
    "download_with_retry",
    "extract_archive",
    "fetch_archive",
    "is_supported_archive",
    "name_matches",
]
