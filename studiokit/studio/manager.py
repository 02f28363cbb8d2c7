"""
Studio provisioning, command execution and teardown.

:class:`StudioManager` owns the link between :class:`~studiokit.studio.Studio`
handles and an :class:`~studiokit.engines.ExecutionEngine`.  It is safe to
share one manager between threads; each studio root is its own mutex domain.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Union

import structlog

from studiokit.config import SessionConfig
from studiokit.engines import ExecutionEngine, ExitStatus, LocalEngine
from studiokit.errors import InvalidStudioState
from studiokit.models import StudioType
from studiokit.utils.cleanup import remove_tree, reset_dir

from .session import InteractiveHandle, Studio, StudioState, lock_path_for

log = structlog.get_logger()
_fs_log = logging.getLogger(__name__)

BASE_PATH = "/usr/local/bin:/usr/bin:/bin"
_LAYOUT = ("cache/src", "build", "pkgs", "svc", "tmp", "plan")


class StudioManager:
    """Create, run in and destroy studios.

    Args:
        engine: Execution back-end; a :class:`LocalEngine` by default.
        grace: Seconds between ``SIGTERM`` and ``SIGKILL`` on destroy.
    """

    def __init__(self, engine: Optional[ExecutionEngine] = None, *, grace: float = 5.0) -> None:
        self.engine = engine or LocalEngine()
        self.grace = grace

    # ------------------------------------------------------------------ #
    # Provisioning                                                       #
    # ------------------------------------------------------------------ #
    def create(
        self,
        studio_type: Union[StudioType, str],
        root: Path,
        config: SessionConfig,
    ) -> Studio:
        """Provision an empty studio at *root*.

        An existing studio at *root* is reset first.

        Raises:
            InvalidStudioState: When *root* is a non-empty directory that is
                not a studio.
            StudioBusy: When another owner holds the root.
        """
        root = Path(root).expanduser().absolute()
        if root.exists() and Studio.read_marker(root) is None:
            if not root.is_dir() or any(root.iterdir()):
                raise InvalidStudioState(f"Refusing to use non-empty directory {root} as a studio")

        mounts: Dict[str, str] = {}
        if not config.no_src_path:
            mounts[str(config.src_path)] = "src"

        studio = Studio(root=root, studio_type=StudioType(studio_type), config=config, mounts=mounts)
        with studio.lock.held():
            if root.exists():
                self.engine.release_mounts(root, mounts)
                log.info("studio.reset", root=str(root))
            reset_dir(root)
            for rel in _LAYOUT:
                (root / rel).mkdir(parents=True, exist_ok=True)
            studio.write_marker()
        studio.state = StudioState.CREATED
        log.info(
            "studio.created",
            root=str(root),
            studio_type=studio.studio_type.value,
            src=next(iter(mounts), None),
        )
        return studio

    def open(self, root: Path, config: SessionConfig) -> Optional[Studio]:
        """Re-attach to the studio at *root*, or return ``None`` if there is none."""
        root = Path(root).expanduser().absolute()
        marker = Studio.read_marker(root)
        if marker is None:
            return None
        studio = Studio(
            root=root,
            studio_type=StudioType(marker.get("studio_type", config.studio_type)),
            config=config,
            mounts=dict(marker.get("mounts") or {}),
        )
        studio.state = StudioState.CREATED
        return studio

    def enter(self, studio: Studio) -> InteractiveHandle:
        """Mark *studio* entered and return an interactive handle.

        Re-entering an entered studio is allowed.
        """
        studio.require_usable()
        studio.state = StudioState.ENTERED
        log.debug("studio.entered", root=str(studio.root))
        return InteractiveHandle(self, studio)

    # ------------------------------------------------------------------ #
    # Execution                                                          #
    # ------------------------------------------------------------------ #
    def base_env(self, studio: Studio) -> Dict[str, str]:
        """Environment every studio process starts from."""
        return {
            "PATH": BASE_PATH,
            "HOME": str(studio.tmp_dir),
            "TMPDIR": str(studio.tmp_dir),
            "LC_ALL": "C",
            "TERM": "dumb",
            "STUDIO_TYPE": studio.studio_type.value,
        }

    def run(
        self,
        studio: Studio,
        command: Union[str, Sequence[str]],
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        *,
        capture: Optional[bool] = None,
    ) -> ExitStatus:
        """Run *command* inside *studio* and wait for it.

        A string is executed with ``bash -e -c`` (``-x`` added when the
        session is verbose); a sequence is executed as-is.  Output is
        captured instead of streamed when the session is quiet.

        Raises:
            StudioBusy: When another owner holds the studio.
            InvalidStudioState: When the studio is absent or destroyed.
        """
        studio.require_usable()
        if isinstance(command, str):
            flags = "-ex" if studio.config.verbose else "-e"
            args = ["bash", flags, "-c", command]
        else:
            args = [str(a) for a in command]
        if capture is None:
            capture = studio.config.quiet

        process_env = self.base_env(studio)
        process_env.update(env or {})

        with studio.lock.held():
            status = self.engine.run(
                args,
                root=studio.root,
                mounts=studio.mounts,
                env=process_env,
                cwd=Path(cwd) if cwd else studio.root,
                capture=capture,
            )
        log.debug("studio.ran", root=str(studio.root), returncode=status.returncode)
        return status

    # ------------------------------------------------------------------ #
    # Teardown                                                           #
    # ------------------------------------------------------------------ #
    def destroy(self, studio_or_root: Union[Studio, Path, str]) -> None:
        """Tear down a studio; safe to call any number of times.

        Running process groups are terminated, mounts released, then the root
        and its lock file removed.  A missing root is a no-op.  A non-empty
        directory that is not a studio is left untouched.
        """
        if isinstance(studio_or_root, Studio):
            studio: Optional[Studio] = studio_or_root
            root = studio_or_root.root
            mounts = studio_or_root.mounts
        else:
            studio = None
            root = Path(studio_or_root).expanduser().absolute()
            mounts = dict((Studio.read_marker(root) or {}).get("mounts") or {})

        if studio is not None:
            studio.mark_cancelled()
        self.engine.terminate(root, grace=self.grace)
        self.engine.release_mounts(root, mounts)

        if root.exists():
            if Studio.read_marker(root) is not None:
                remove_tree(root)
                log.info("studio.destroyed", root=str(root))
            elif root.is_dir() and not any(root.iterdir()):
                root.rmdir()
            else:
                _fs_log.warning("Not removing %s: it is not a studio", root)
        lock = lock_path_for(root)
        if lock.exists():
            lock.unlink()

        if studio is not None:
            studio.state = StudioState.DESTROYED
