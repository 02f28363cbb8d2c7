"""
Build artifacts: reproducible tarballs with a manifest.

An artifact is ``<origin>-<name>-<version>-<release>.tar.gz`` whose first
member is ``MANIFEST.json`` followed by the content of the install prefix.
Packing is deterministic: members are sorted, owners and timestamps are
zeroed and the gzip header carries no mtime, so identical prefixes give
byte-identical artifacts and therefore identical checksums.
"""

from __future__ import annotations

import gzip
import io
import json
import os
import posixpath
import tarfile
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from studiokit.errors import CorruptArtifact
from studiokit.io.fetch import file_digest
from studiokit.models import PackageIdent

MANIFEST_NAME = "MANIFEST.json"


class ArtifactManifest(BaseModel, frozen=True):
    """Metadata recorded at the top of every artifact."""

    ident: PackageIdent
    runtime_deps: Tuple[PackageIdent, ...] = ()
    build_deps: Tuple[PackageIdent, ...] = ()
    binary_path: Tuple[str, ...] = ()
    license: Tuple[str, ...] = ()
    maintainer: Optional[str] = None
    source: Optional[str] = None
    source_checksum: Optional[str] = None
    signing_key: Optional[str] = None
    studio_type: str


class Artifact(BaseModel, frozen=True):
    """A packed artifact on disk.

    Attributes:
        ident: Fully qualified identifier.
        path: Location of the tarball.
        checksum: ``sha256:<hex>`` of the tarball bytes (its content address).
    """

    ident: PackageIdent
    path: Path
    checksum: str

    @classmethod
    def from_file(cls, path: Path) -> "Artifact":
        """Describe an existing artifact file.

        Raises:
            CorruptArtifact: When the file is not a readable artifact.
        """
        path = Path(path).expanduser().absolute()
        if not path.is_file():
            raise CorruptArtifact(f"{path} does not exist")
        manifest = read_manifest(path)
        return cls(ident=manifest.ident, path=path, checksum=checksum_of(path))


def checksum_of(path: Path) -> str:
    return "sha256:" + file_digest(path, "sha256")


def artifact_filename(ident: PackageIdent) -> str:
    return f"{ident.origin}-{ident.name}-{ident.version}-{ident.release}.tar.gz"


def read_manifest(path: Path) -> ArtifactManifest:
    """Return the manifest stored in the artifact at *path*.

    Raises:
        CorruptArtifact: When the archive or its manifest is unreadable.
    """
    try:
        with tarfile.open(path, "r:gz") as tf:
            member = tf.getmember(MANIFEST_NAME)
            fh = tf.extractfile(member)
            if fh is None:
                raise CorruptArtifact(f"{path.name}: {MANIFEST_NAME} is not a file")
            return ArtifactManifest.model_validate_json(fh.read())
    except (tarfile.TarError, KeyError, OSError, EOFError) as exc:
        raise CorruptArtifact(f"{path.name}: unreadable artifact ({exc})") from exc
    except ValidationError as exc:
        raise CorruptArtifact(f"{path.name}: invalid manifest – {exc}") from exc


def _normalise(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mtime = 0
    if info.isdir():
        info.mode = 0o755
    elif info.isfile():
        info.mode = 0o755 if info.mode & 0o111 else 0o644
    return info


def _link_target(path: Path, prefix: Path) -> str:
    """Return the target of symlink *path* as a link relative to its directory.

    Absolute links into *prefix* (``ln -s $pkg_prefix/bin/x ...``) are
    rewritten so the installed copy stays self-contained.

    Raises:
        CorruptArtifact: When the link points outside *prefix*.
    """
    target = os.readlink(path)
    rel = path.relative_to(prefix)
    link_dir = rel.parent.as_posix()
    escapes = f"symlink {rel.as_posix()!r} points outside the install prefix ({target})"
    if os.path.isabs(target):
        absolute = Path(os.path.normpath(target))
        for root in (prefix, prefix.resolve()):
            if absolute == root or root in absolute.parents:
                inside = absolute.relative_to(root).as_posix()
                return posixpath.relpath(inside, link_dir)
        raise CorruptArtifact(escapes)
    if posixpath.normpath(posixpath.join(link_dir, target)).split("/")[0] == "..":
        raise CorruptArtifact(escapes)
    return target


def _walk(prefix: Path) -> List[Path]:
    entries: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(prefix):
        dirnames.sort()
        base = Path(dirpath)
        for name in sorted([*dirnames, *filenames]):
            entries.append(base / name)
    return sorted(entries, key=lambda p: p.relative_to(prefix).as_posix())


def pack_artifact(prefix: Path, manifest: ArtifactManifest, dest_dir: Path) -> Artifact:
    """Pack *prefix* with *manifest* into *dest_dir* and return the artifact."""
    if not manifest.ident.fully_qualified:
        raise ValueError(f"artifact identifier {manifest.ident} is not fully qualified")
    prefix = Path(prefix).absolute()
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    target = dest_dir / artifact_filename(manifest.ident)
    partial = target.with_name(target.name + ".part")

    payload = (json.dumps(manifest.model_dump(mode="json"), indent=2, sort_keys=True) + "\n").encode()
    try:
        with partial.open("wb") as raw, gzip.GzipFile(
            filename="", mode="wb", fileobj=raw, mtime=0
        ) as gz, tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tf:
            info = _normalise(tarfile.TarInfo(MANIFEST_NAME))
            info.size = len(payload)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(payload))
            for path in _walk(prefix):
                arcname = path.relative_to(prefix).as_posix()
                info = tf.gettarinfo(str(path), arcname=arcname)
                if info is None:  # sockets and other special files
                    continue
                info = _normalise(info)
                if info.issym():
                    info.linkname = _link_target(path, prefix)
                if info.isfile():
                    with path.open("rb") as fh:
                        tf.addfile(info, fh)
                else:
                    tf.addfile(info)
        os.replace(partial, target)
    finally:
        partial.unlink(missing_ok=True)

    return Artifact(ident=manifest.ident, path=target.absolute(), checksum=checksum_of(target))
