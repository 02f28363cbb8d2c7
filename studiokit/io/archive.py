"""
Unpacking of source archives and package artifacts.

:func:`unpack` extracts a TAR (plain, gzip, bzip2, xz) or ZIP archive into a
directory and returns the source tree it produced: the single top-level
directory when the archive has exactly one, else the destination itself.

Every member is checked before anything is written; absolute names, ``..``
components, links pointing outside the destination and device files are
rejected with :class:`UnsafeArchive`.
"""

from __future__ import annotations

import logging
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Set

log = logging.getLogger(__name__)

#: Recognised archive endings, longest first so ``.tar.gz`` beats ``.gz``.
ARCHIVE_SUFFIXES: tuple[str, ...] = (
    ".tar.gz",
    ".tar.bz2",
    ".tar.xz",
    ".tar",
    ".tgz",
    ".tbz",
    ".txz",
    ".zip",
)

_TAR_FILTER = {"filter": "data"} if hasattr(tarfile, "data_filter") else {}


class UnsafeArchive(ValueError):
    """An archive member would land outside the destination directory."""


def looks_like_archive(path: Path) -> bool:
    """Return ``True`` when *path* is a file with a recognised archive suffix."""
    if not path.is_file():
        return False
    lower_name = path.name.lower()
    return any(lower_name.endswith(suf) for suf in ARCHIVE_SUFFIXES)


def _check_name(name: str) -> PurePosixPath:
    rel = PurePosixPath(name)
    if rel.is_absolute() or ".." in rel.parts:
        raise UnsafeArchive(f"member {name!r} escapes the destination")
    return rel


def safe_tar_members(tf: tarfile.TarFile) -> List[tarfile.TarInfo]:
    """Return the members of *tf* after validating every one of them.

    Raises:
        UnsafeArchive: On absolute/parent paths, escaping links or special
            files.
    """
    members = tf.getmembers()
    for m in members:
        rel = _check_name(m.name)
        if m.issym():
            target = PurePosixPath(m.linkname)
            if target.is_absolute():
                raise UnsafeArchive(f"symlink {m.name!r} is absolute")
            parts = list(rel.parent.parts)
            for part in target.parts:
                if part == "..":
                    if not parts:
                        raise UnsafeArchive(f"symlink {m.name!r} points outside the archive")
                    parts.pop()
                elif part != ".":
                    parts.append(part)
        elif m.islnk():
            _check_name(m.linkname)
        elif not (m.isfile() or m.isdir()):
            raise UnsafeArchive(f"member {m.name!r} is not a regular file or directory")
    return members


def _top_level(names: List[str]) -> Set[str]:
    return {PurePosixPath(n).parts[0] for n in names if n and PurePosixPath(n).parts}


def unpack(archive: Path, dest: Path) -> Path:
    """Extract *archive* into *dest* and return the unpacked source tree.

    Raises:
        UnsafeArchive: When a member would escape *dest*.
        ValueError: When *archive* is not a TAR or ZIP file.
    """
    archive = Path(archive)
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)

    if tarfile.is_tarfile(archive):
        log.info("Unpacking TAR: %s → %s", archive, dest)
        with tarfile.open(archive) as tf:
            members = safe_tar_members(tf)
            tf.extractall(dest, members=members, **_TAR_FILTER)
        roots = _top_level([m.name for m in members])
    elif zipfile.is_zipfile(archive):
        log.info("Unzipping ZIP: %s → %s", archive, dest)
        with zipfile.ZipFile(archive) as zf:
            names = zf.namelist()
            for name in names:
                _check_name(name)
            zf.extractall(dest)
        roots = _top_level(names)
    else:
        raise ValueError(f"{archive} is neither a TAR nor a ZIP archive")

    roots.discard(".")
    if len(roots) == 1:
        tree = dest / roots.pop()
        if tree.is_dir():
            return tree
    return dest
