"""
Source download and checksum verification.

:class:`SourceFetcher` is the collaborator interface the default ``prepare``
stage talks to.  :class:`HttpSourceFetcher` is the reference implementation:

* ``http://`` / ``https://`` URLs are streamed with :mod:`requests`;
* ``file://`` URLs and plain paths are copied;
* a file already present in the cache is reused when its checksum matches.

A file that fails verification is deleted so the next attempt starts clean.
No retries are attempted.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from studiokit.errors import ChecksumMismatch, FetchFailed

log = logging.getLogger(__name__)

_CHUNK = 1 << 20


def file_digest(path: Path, algo: str = "sha256") -> str:
    """Return the hex digest of *path* using *algo*."""
    h = hashlib.new(algo)
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def _split(checksum: str) -> tuple[str, str]:
    algo, _, digest = checksum.rpartition(":")
    return (algo or "sha256").lower(), digest.lower()


def matches_checksum(path: Path, checksum: str) -> bool:
    """Return ``True`` when *path* hashes to the ``algo:hex`` *checksum*."""
    algo, digest = _split(checksum)
    return file_digest(path, algo) == digest


def verify_checksum(path: Path, checksum: str) -> None:
    """Raise :class:`ChecksumMismatch` (and delete *path*) on a mismatch."""
    algo, digest = _split(checksum)
    actual = file_digest(path, algo)
    if actual != digest:
        path.unlink(missing_ok=True)
        raise ChecksumMismatch(path, f"{algo}:{digest}", f"{algo}:{actual}")


def filename_for(url: str) -> str:
    """Return the cache file name for *url* (its last path component)."""
    name = Path(unquote(urlparse(url).path)).name
    return name or "source"


class SourceFetcher(ABC):
    """Download a source archive and verify it."""

    @abstractmethod
    def fetch(self, url: str, checksum: str, dest_dir: Path) -> Path:
        """Place the verified file for *url* inside *dest_dir*.

        Raises:
            FetchFailed: When the file cannot be retrieved.
            ChecksumMismatch: When the retrieved file does not match.
        """
        raise NotImplementedError


class HttpSourceFetcher(SourceFetcher):
    """Fetch over HTTP(S) with :mod:`requests`, or copy local files."""

    def __init__(self, session: requests.Session | None = None, timeout: float = 60.0) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch(self, url: str, checksum: str, dest_dir: Path) -> Path:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / filename_for(url)

        if target.is_file() and matches_checksum(target, checksum):
            log.info("Using cached source %s", target)
            return target

        partial = target.with_name(target.name + ".part")
        parsed = urlparse(url)
        try:
            if parsed.scheme in {"http", "https"}:
                self._download(url, partial)
            elif parsed.scheme in {"", "file"}:
                self._copy(Path(unquote(parsed.path)), partial)
            else:
                raise FetchFailed(f"Unsupported URL scheme {parsed.scheme!r} in {url}")
            os.replace(partial, target)
        finally:
            partial.unlink(missing_ok=True)

        verify_checksum(target, checksum)
        log.info("Fetched %s → %s", url, target)
        return target

    def _download(self, url: str, dest: Path) -> None:
        log.info("Downloading %s", url)
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                with dest.open("wb") as fh:
                    for chunk in resp.iter_content(chunk_size=_CHUNK):
                        fh.write(chunk)
        except requests.exceptions.HTTPError as err:
            raise FetchFailed(f"HTTP error while downloading {url}: {err}") from err
        except requests.exceptions.RequestException as err:
            raise FetchFailed(f"Could not download {url}: {err}") from err

    @staticmethod
    def _copy(src: Path, dest: Path) -> None:
        if not src.is_file():
            raise FetchFailed(f"Source file {src} does not exist")
        shutil.copyfile(src, dest)
