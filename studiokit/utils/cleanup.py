"""Filesystem reset helpers used by studios, the store and extraction.

The helpers perform destructive filesystem operations only and touch no
other state.  Each removal is logged through the module logger so callers
keep a consistent breadcrumb trail.
"""

from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

log = logging.getLogger(__name__)


def remove_tree(path: Path) -> bool:
    """Remove *path* (file, symlink or directory).

    Symlinks are unlinked, never followed.

    Returns:
        ``True`` when something was removed, ``False`` when *path* was
        already absent.
    """
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
        log.debug("Deleted %s", path)
        return True
    if path.is_dir():
        shutil.rmtree(path)
        log.debug("Deleted directory %s", path)
        return True
    return False


def reset_dir(path: Path) -> Path:
    """Make *path* an existing, empty directory."""
    path = Path(path)
    remove_tree(path)
    path.mkdir(parents=True)
    return path


@contextmanager
def scoped_dir(path: Path, *, keep: bool = False) -> Iterator[Path]:
    """Provide a fresh directory at *path*, removed again on every exit path.

    Args:
        path: Directory to create (reset when it already exists).
        keep: Leave the directory in place on exit.
    """
    reset_dir(path)
    try:
        yield path
    finally:
        if not keep:
            remove_tree(path)
