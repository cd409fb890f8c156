"""Download of FreeBSD distribution archives.

``base.txz`` and ``kernel.txz`` are cached in a destination directory. A
cached archive is reused when it is at least 1 KiB and starts with the xz
magic; anything else is downloaded again from::

    <mirror>/releases/<arch>/<version>/<archive>

After a download the archives are checked against the release ``MANIFEST``.
A missing MANIFEST or a checksum mismatch is reported as a warning only.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Union

import aiohttp

from pgsdbuild.logging import LoggerFactory
from pgsdbuild.storage.exceptions import FetchError


if TYPE_CHECKING:
    from loguru import Logger


PathLike = Union[str, Path]

DEFAULT_MIRROR = "https://download.freebsd.org"
DEFAULT_ARCH = "amd64"
ARCHIVES = ("base.txz", "kernel.txz")
MANIFEST_FILE = "MANIFEST"

XZ_MAGIC = b"\xfd\x37\x7a\x58\x5a\x00"
MIN_ARCHIVE_SIZE = 1024

CHUNK_SIZE = 32 * 1024
DOWNLOAD_TIMEOUT_SECONDS = 30 * 60
MANIFEST_TIMEOUT_SECONDS = 30
PROGRESS_INTERVAL_SECONDS = 2.0

_MB = 1024 * 1024


def release_url(mirror: str, arch: str, version: str) -> str:
    return f"{mirror.rstrip('/')}/releases/{arch}/{version}"


def verify_archive(path: Path) -> None:
    """Check that ``path`` looks like a complete xz archive.

    Raises:
        ValueError: If the file is smaller than 1 KiB or lacks the xz magic
    """
    size = path.stat().st_size
    if size < MIN_ARCHIVE_SIZE:
        raise ValueError(f"file too small (possibly corrupt): {size} bytes")
    with open(path, "rb") as handle:
        magic = handle.read(len(XZ_MAGIC))
    if magic != XZ_MAGIC:
        raise ValueError("not a valid xz archive")


def parse_manifest(text: str) -> dict[str, str]:
    """Extract SHA256 checksums from a release MANIFEST.

    Understands the BSD ``SHA256 (base.txz) = <hash>`` form and the
    tab separated ``base.txz<TAB><hash><TAB>...`` form FreeBSD releases use.
    """
    checksums = {}
    for line in text.splitlines():
        if "SHA256" in line and " = " in line:
            parts = line.split(" = ")
            if len(parts) != 2:
                continue
            label = parts[0].strip()
            start = label.find("(")
            end = label.find(")")
            if start >= 0 and end > start:
                checksums[label[start + 1 : end]] = parts[1].strip().lower()
            continue
        fields = line.split("\t")
        if len(fields) >= 2 and len(fields[1]) == 64:
            checksums[fields[0].strip()] = fields[1].strip().lower()
    return checksums


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for block in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


class Fetcher:
    """Fetches and caches FreeBSD ``base.txz`` and ``kernel.txz``."""

    def __init__(
        self,
        version: str,
        dest_dir: PathLike,
        arch: str = DEFAULT_ARCH,
        mirror: Optional[str] = None,
        log: Optional[Logger] = None,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.version = version
        self.dest_dir = Path(dest_dir)
        self.arch = arch
        self.mirror = mirror or DEFAULT_MIRROR
        self.log = log or LoggerFactory.for_build()
        self.session_factory = session_factory or aiohttp.ClientSession

    @property
    def base_url(self) -> str:
        return release_url(self.mirror, self.arch, self.version)

    def fetch_archives(self) -> dict[str, Path]:
        """Make sure both archives are cached and return their paths by name.

        Raises:
            FetchError: If a download fails
            OSError: If the destination directory cannot be created
        """
        return asyncio.run(self.fetch_archives_async())

    async def fetch_archives_async(self) -> dict[str, Path]:
        self.log.info(
            f"Checking for FreeBSD {self.version} ({self.arch}) distribution archives"
        )
        self.dest_dir.mkdir(parents=True, exist_ok=True)
        paths = {name: self.dest_dir / name for name in ARCHIVES}

        missing = [name for name, path in paths.items() if not self._is_cached(path)]
        if not missing:
            self.log.info(f"Archives already cached in {self.dest_dir}")
            return paths

        async with self.session_factory() as session:
            for name in missing:
                await self.download(session, f"{self.base_url}/{name}", paths[name])
            await self.verify_checksums(session, paths)
        return paths

    def _is_cached(self, path: Path) -> bool:
        if not path.exists():
            return False
        try:
            verify_archive(path)
        except ValueError as error:
            self.log.warning(f"Cached {path.name} appears corrupt, will re-download: {error}")
            return False
        return True

    async def download(self, session: aiohttp.ClientSession, url: str, dest: Path) -> int:
        """Download ``url`` to ``dest`` through a temporary file.

        Returns the number of bytes written.
        """
        tmp_path = dest.with_name(dest.name + ".tmp")
        timeout = aiohttp.ClientTimeout(total=DOWNLOAD_TIMEOUT_SECONDS)
        self.log.info(f"Downloading {url}")
        written = 0
        try:
            async with session.get(url, timeout=timeout) as resp:
                if resp.status != 200:
                    raise FetchError(url, f"HTTP {resp.status}")
                total = resp.content_length
                last_report = time.monotonic()
                with open(tmp_path, "wb") as out:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        out.write(chunk)
                        written += len(chunk)
                        if time.monotonic() - last_report > PROGRESS_INTERVAL_SECONDS:
                            self._report_progress(written, total)
                            last_report = time.monotonic()
                    out.flush()
                    os.fsync(out.fileno())
            os.replace(tmp_path, dest)
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise FetchError(url, str(error) or type(error).__name__) from error
        except OSError as error:
            raise FetchError(url, f"cannot write {dest}: {error}") from error
        finally:
            tmp_path.unlink(missing_ok=True)

        self.log.info(f"Download complete: {written / _MB:.1f} MB")
        return written

    def _report_progress(self, written: int, total: Optional[int]) -> None:
        if total:
            percent = written / total * 100
            self.log.info(
                f"Downloaded: {percent:.1f}% ({written / _MB:.1f} MB / {total / _MB:.1f} MB)"
            )
        else:
            self.log.info(f"Downloaded: {written / _MB:.1f} MB")

    async def fetch_manifest(self, session: aiohttp.ClientSession) -> dict[str, str]:
        url = f"{self.base_url}/{MANIFEST_FILE}"
        self.log.debug(f"Downloading {url} for checksum verification")
        timeout = aiohttp.ClientTimeout(total=MANIFEST_TIMEOUT_SECONDS)
        try:
            async with session.get(url, timeout=timeout) as resp:
                if resp.status != 200:
                    raise FetchError(url, f"MANIFEST not found: HTTP {resp.status}")
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise FetchError(url, str(error) or type(error).__name__) from error
        return parse_manifest(text)

    async def verify_checksums(
        self, session: aiohttp.ClientSession, paths: dict[str, Path]
    ) -> bool:
        """Compare archives with the release MANIFEST.

        Returns True only when every archive has a matching checksum.
        Problems are logged as warnings and never raised.
        """
        try:
            checksums = await self.fetch_manifest(session)
        except FetchError as error:
            self.log.warning(f"Checksum verification unavailable: {error}")
            self.log.warning("Continuing anyway - archives may be corrupt")
            return False

        verified = True
        for name, path in paths.items():
            expected = checksums.get(name)
            if expected is None:
                self.log.warning(f"No checksum found for {name} in MANIFEST")
                verified = False
                continue
            actual = sha256_file(path)
            if actual != expected:
                self.log.warning(
                    f"{name} checksum mismatch: expected {expected}, got {actual}"
                )
                verified = False
            else:
                self.log.info(f"{name} checksum verified")

        if not verified:
            self.log.warning("Continuing anyway - archives may be corrupt")
        return verified
