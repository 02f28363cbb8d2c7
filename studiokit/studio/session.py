"""
Studio session objects.

A :class:`Studio` is the handle for one isolated build root.  Its directory
layout is fixed::

    <root>/
        .studio.json        marker (type, creation time, mounts)
        src/                source mount
        plan/               copy of the plan directory (PLAN_CONTEXT)
        cache/src/          fetched sources (CACHE_PATH)
        build/              unpacked sources
        pkgs/<o>/<n>/<v>/<r>/   install prefix (pkg_prefix)
        svc/<name>/var/     pkg_srvc_var
        tmp/

The root is a mutex domain guarded by :class:`StudioLock`, a lock file that
lives *beside* the root so that destroying the root never races the lock.
"""

from __future__ import annotations

import fcntl
import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import IO, TYPE_CHECKING, Dict, Iterator, Mapping, Optional, Sequence

from studiokit.config import SessionConfig
from studiokit.errors import InvalidStudioState, StudioBusy
from studiokit.models import PackageIdent, StudioType

if TYPE_CHECKING:  # pragma: no cover
    from studiokit.engines import ExitStatus

    from .manager import StudioManager

MARKER = ".studio.json"


class StudioState(str, Enum):
    ABSENT = "absent"
    CREATED = "created"
    ENTERED = "entered"
    DESTROYED = "destroyed"


def lock_path_for(root: Path) -> Path:
    """``/a/b/root`` → ``/a/b/.root.lock``."""
    return root.parent / f".{root.name}.lock"


class StudioLock:
    """Exclusive, owner re-entrant lock on a studio root.

    Exclusion between processes comes from ``flock`` on the lock file;
    between threads of one process from a non-blocking :class:`threading.RLock`.
    The owning thread may acquire it any number of times.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.path = lock_path_for(root)
        self._rlock = threading.RLock()
        self._depth = 0
        self._fh: Optional[IO[str]] = None

    def acquire(self) -> None:
        """Take the lock or raise :class:`StudioBusy` without waiting."""
        if not self._rlock.acquire(blocking=False):
            raise StudioBusy(self.root)
        if self._depth == 0:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fh = self.path.open("a+", encoding="utf-8")
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                fh.close()
                self._rlock.release()
                raise StudioBusy(self.root) from None
            self._fh = fh
        self._depth += 1

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._fh is not None:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
            self._fh.close()
            self._fh = None
        self._rlock.release()

    @contextmanager
    def held(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()

    @property
    def owned(self) -> bool:
        return self._depth > 0


@dataclass
class Studio:
    """One build root and its session state.

    Attributes:
        root: Absolute studio root; the studio's identity.
        studio_type: Flavour of the studio.
        config: Session configuration the studio was created under.
        mounts: Host path → path relative to *root* (at most the ``src``
            mount).
        state: Lifecycle state, see :class:`StudioState`.
    """

    root: Path
    studio_type: StudioType
    config: SessionConfig
    mounts: Dict[str, str] = field(default_factory=dict)
    state: StudioState = StudioState.ABSENT
    lock: StudioLock = field(init=False, repr=False)
    _cancelled: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def __post_init__(self) -> None:
        self.lock = StudioLock(self.root)

    # ------------------------------------------------------------------ #
    # Layout                                                             #
    # ------------------------------------------------------------------ #
    @property
    def marker(self) -> Path:
        return self.root / MARKER

    @property
    def src_dir(self) -> Path:
        return self.root / "src"

    @property
    def plan_dir(self) -> Path:
        return self.root / "plan"

    @property
    def cache_dir(self) -> Path:
        return self.root / "cache" / "src"

    @property
    def build_dir(self) -> Path:
        return self.root / "build"

    @property
    def tmp_dir(self) -> Path:
        return self.root / "tmp"

    def prefix_for(self, ident: PackageIdent) -> Path:
        """Install prefix of the fully qualified *ident*."""
        return self.root.joinpath(
            "pkgs", ident.origin, ident.name, ident.version or "", ident.release or ""
        )

    def srvc_var_for(self, name: str) -> Path:
        return self.root / "svc" / name / "var"

    @property
    def src_mounted(self) -> bool:
        return "src" in self.mounts.values()

    def host_path(self, path: Path) -> Path:
        """Map a studio path to where the host sees it.

        Paths below the ``src`` mount point resolve into the mounted host
        directory; every other path is shared verbatim between host and
        studio.
        """
        path = Path(path)
        for host, guest in self.mounts.items():
            mount_point = self.root / guest
            try:
                rel = path.relative_to(mount_point)
            except ValueError:
                continue
            return Path(host) / rel
        return path

    # ------------------------------------------------------------------ #
    # State                                                              #
    # ------------------------------------------------------------------ #
    @property
    def cancelled(self) -> bool:
        """``True`` once :meth:`StudioManager.destroy` was called."""
        return self._cancelled.is_set()

    def mark_cancelled(self) -> None:
        self._cancelled.set()

    def require_usable(self) -> None:
        if self.state in (StudioState.ABSENT, StudioState.DESTROYED):
            raise InvalidStudioState(f"Studio {self.root} is {self.state.value}")

    def write_marker(self) -> None:
        payload = {
            "studio_type": self.studio_type.value,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "mounts": self.mounts,
        }
        self.marker.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    @staticmethod
    def read_marker(root: Path) -> Optional[dict]:
        marker = Path(root) / MARKER
        if not marker.is_file():
            return None
        try:
            return json.loads(marker.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None


class InteractiveHandle:
    """Entered-studio handle returned by :meth:`StudioManager.enter`."""

    def __init__(self, manager: "StudioManager", studio: Studio) -> None:
        self.manager = manager
        self.studio = studio

    def run(
        self,
        command: "str | Sequence[str]",
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> "ExitStatus":
        return self.manager.run(self.studio, command, env=env, cwd=cwd)

    def shell(self, env: Optional[Mapping[str, str]] = None) -> "ExitStatus":
        """Start an interactive shell in the studio and wait for it to exit."""
        return self.manager.run(
            self.studio, ["bash", "--noprofile", "--norc", "-i"], env=env, capture=False
        )

    def __enter__(self) -> "InteractiveHandle":
        return self

    def __exit__(self, *exc) -> None:
        return None
