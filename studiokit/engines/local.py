"""Host-process execution engine."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence

import structlog

from .base import ExecutionEngine, ExitStatus

log = structlog.get_logger()


class LocalEngine(ExecutionEngine):
    """Run studio commands as host processes.

    Mounts are realised as symlinks below the studio root, so a source tree
    mounted at ``src`` is reachable as ``<root>/src``.  Isolation is limited
    to the process environment and working directory; use
    :class:`~studiokit.engines.docker.DockerEngine` for filesystem isolation.
    """

    def _ensure_mounts(self, root: Path, mounts: Mapping[str, str]) -> None:
        for host, guest in mounts.items():
            link = root / guest
            target = Path(host)
            if link.is_symlink():
                if link.resolve() == target.resolve():
                    continue
                link.unlink()
            elif link.exists():
                raise FileExistsError(f"Mount point {link} is occupied")
            link.parent.mkdir(parents=True, exist_ok=True)
            link.symlink_to(target, target_is_directory=True)
            log.debug("local.mount", host=str(target), guest=str(link))

    def release_mounts(self, root: Path, mounts: Mapping[str, str]) -> None:
        """Remove the mount symlinks (never the mounted content)."""
        for guest in mounts.values():
            link = root / guest
            if link.is_symlink():
                link.unlink()
                log.debug("local.unmount", guest=str(link))

    def run(
        self,
        args: Sequence[str],
        *,
        root: Path,
        mounts: Mapping[str, str],
        env: Mapping[str, str],
        cwd: Path | None = None,
        capture: bool = False,
    ) -> ExitStatus:
        """Execute *args* on the host inside *root*."""
        self._ensure_mounts(root, mounts)
        log.info("local.run", root=str(root), args=list(args)[:3])
        return self._spawn(args, root=root, env=env, cwd=cwd or root, capture=capture)
