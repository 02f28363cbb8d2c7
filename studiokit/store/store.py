"""
On-disk package store.

Layout::

    <store>/<origin>/<name>/<version>/<release>/
        INSTALL.json        checksum + install time
        MANIFEST.json       copied from the artifact
        ...                 extracted prefix content
    <store>/.locks/<origin>--<name>--<version>--<release>.lock

Installs of one identity are serialised through an ``flock`` on its lock
file and land atomically: content is extracted into a hidden sibling and
renamed into place only once complete.
"""

from __future__ import annotations

import fcntl
import json
import os
import tarfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

import structlog
from pydantic import BaseModel

from studiokit.errors import AlreadyInstalled, CorruptArtifact
from studiokit.io.archive import UnsafeArchive, safe_tar_members
from studiokit.models import PackageIdent
from studiokit.utils.cleanup import scoped_dir

from .artifact import MANIFEST_NAME, Artifact, ArtifactManifest, checksum_of, read_manifest

log = structlog.get_logger()

INSTALL_RECORD = "INSTALL.json"
_TAR_FILTER = {"filter": "data"} if hasattr(tarfile, "data_filter") else {}


class InstalledPackage(BaseModel, frozen=True):
    """One entry of the package store."""

    ident: PackageIdent
    path: Path
    checksum: str
    installed_at: datetime
    manifest: ArtifactManifest

    def binary_dirs(self) -> List[Path]:
        """Existing ``binary_path`` directories of this package."""
        return [self.path / rel for rel in self.manifest.binary_path if (self.path / rel).is_dir()]


class PackageStore:
    """Registry of installed artifacts rooted at *root*."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser().absolute()

    # ------------------------------------------------------------------ #
    # Install                                                            #
    # ------------------------------------------------------------------ #
    def entry_dir(self, ident: PackageIdent) -> Path:
        return self.root.joinpath(ident.origin, ident.name, ident.version, ident.release)

    @contextmanager
    def _identity_lock(self, ident: PackageIdent) -> Iterator[None]:
        lock_path = self.root / ".locks" / f"{str(ident).replace('/', '--')}.lock"
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with lock_path.open("a+", encoding="utf-8") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def install(self, artifact: Artifact, *, strict: bool = False) -> InstalledPackage:
        """Install *artifact* and return its store entry.

        Re-installing identical content returns the existing entry (or raises
        :class:`AlreadyInstalled` when *strict*).

        Raises:
            CorruptArtifact: On checksum/manifest mismatch, unsafe members, or
                different content under an installed identifier.
        """
        ident = artifact.ident
        if not ident.fully_qualified:
            raise CorruptArtifact(f"{ident} is not a fully qualified identifier")
        if checksum_of(artifact.path) != artifact.checksum:
            raise CorruptArtifact(f"{artifact.path.name}: checksum does not match {artifact.checksum}")
        manifest = read_manifest(artifact.path)
        if manifest.ident != ident:
            raise CorruptArtifact(
                f"{artifact.path.name}: manifest names {manifest.ident}, expected {ident}"
            )

        dest = self.entry_dir(ident)
        with self._identity_lock(ident):
            existing = self._read_entry(dest)
            if existing is not None:
                if existing.checksum != artifact.checksum:
                    raise CorruptArtifact(
                        f"{ident} is installed with different content "
                        f"({existing.checksum} != {artifact.checksum})"
                    )
                if strict:
                    raise AlreadyInstalled(str(ident))
                log.info("store.already_installed", ident=str(ident))
                return existing

            # renamed into place on success, removed on every other path
            staging = dest.with_name(f".{dest.name}.tmp-{os.getpid()}")
            with scoped_dir(staging):
                with tarfile.open(artifact.path, "r:gz") as tf:
                    try:
                        members = safe_tar_members(tf)
                    except UnsafeArchive as exc:
                        raise CorruptArtifact(f"{artifact.path.name}: {exc}") from exc
                    tf.extractall(staging, members=members, **_TAR_FILTER)
                record = {
                    "ident": str(ident),
                    "checksum": artifact.checksum,
                    "installed_at": datetime.now(timezone.utc).isoformat(),
                }
                (staging / INSTALL_RECORD).write_text(json.dumps(record, indent=2) + "\n")
                os.rename(staging, dest)

        installed = self._read_entry(dest)
        assert installed is not None
        log.info("store.installed", ident=str(ident), path=str(dest))
        return installed

    # ------------------------------------------------------------------ #
    # Queries                                                            #
    # ------------------------------------------------------------------ #
    def _read_entry(self, path: Path) -> Optional[InstalledPackage]:
        record_file = path / INSTALL_RECORD
        if not record_file.is_file():
            return None
        record = json.loads(record_file.read_text())
        manifest = ArtifactManifest.model_validate_json((path / MANIFEST_NAME).read_text())
        return InstalledPackage(
            ident=manifest.ident,
            path=path,
            checksum=record["checksum"],
            installed_at=datetime.fromisoformat(record["installed_at"]),
            manifest=manifest,
        )

    def installed(self, ident: PackageIdent) -> List[InstalledPackage]:
        """Every entry matching *ident*, most recently installed first."""
        base = self.root / ident.origin / ident.name
        if not base.is_dir():
            return []
        found: List[InstalledPackage] = []
        for record in base.glob(f"*/*/{INSTALL_RECORD}"):
            if record.parent.name.startswith("."):  # staging
                continue
            entry = self._read_entry(record.parent)
            if entry is not None and ident.matches(entry.ident):
                found.append(entry)
        found.sort(key=lambda e: (e.installed_at, e.ident.release or ""), reverse=True)
        return found

    def latest(self, ident: PackageIdent) -> Optional[InstalledPackage]:
        matches = self.installed(ident)
        return matches[0] if matches else None

    def is_satisfied(self, ident: PackageIdent) -> bool:
        return self.latest(ident) is not None

    def runtime_deps_of(self, ident: PackageIdent) -> Optional[List[PackageIdent]]:
        """Runtime deps from the newest matching manifest, or ``None`` if absent."""
        entry = self.latest(ident)
        return list(entry.manifest.runtime_deps) if entry is not None else None

    def binary_dirs(self, ident: PackageIdent) -> List[Path]:
        entry = self.latest(ident)
        return entry.binary_dirs() if entry is not None else []
