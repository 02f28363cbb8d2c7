"""Copy named binaries out of the package store."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

from studiokit.models import PackageIdent
from studiokit.utils.cleanup import reset_dir

from .artifact import MANIFEST_NAME
from .store import INSTALL_RECORD, InstalledPackage, PackageStore

log = logging.getLogger(__name__)

_BOOKKEEPING = {MANIFEST_NAME, INSTALL_RECORD}


def _find(pkg: InstalledPackage, name: str) -> Optional[Path]:
    # binary_path dirs first, then anywhere in the package
    for directory in pkg.binary_dirs():
        candidate = directory / name
        if candidate.is_file():
            return candidate
    for candidate in sorted(pkg.path.rglob(name)):
        if candidate.is_file() and candidate.name not in _BOOKKEEPING:
            return candidate
    return None


def extract_binaries(
    store: PackageStore,
    ident: PackageIdent,
    names: Iterable[str],
    dest: Path,
) -> List[Path]:
    """Copy each file in *names* from the store into a freshly emptied *dest*.

    When several installed artifacts match *ident*, the most recently
    installed one that contains a name wins.  Names that cannot be found are
    logged and left out of the result.

    Returns:
        Paths of the copied files inside *dest*, in request order.
    """
    dest = reset_dir(Path(dest))
    candidates = store.installed(ident)
    if not candidates:
        log.warning("No installed package matches %s", ident)

    copied: List[Path] = []
    for name in names:
        for pkg in candidates:
            source = _find(pkg, name)
            if source is not None:
                target = dest / name
                shutil.copy2(source, target)
                log.info("Extracted %s from %s", name, pkg.ident)
                copied.append(target)
                break
        else:
            log.warning("%s not found in any installed %s", name, ident)
    return copied
