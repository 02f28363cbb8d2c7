"""Docker execution engine."""

from __future__ import annotations

import hashlib
import itertools
import os
import subprocess
from pathlib import Path
from typing import Dict, Mapping, Sequence, Set

import structlog

from .base import ExecutionEngine, ExitStatus

log = structlog.get_logger()

DEFAULT_IMAGE = "debian:stable-slim"


class DockerEngine(ExecutionEngine):
    """Run studio commands inside Docker containers.

    The studio root is bind-mounted at the *same* path inside the container,
    so every path computed on the host (prefix, cache, store) stays valid in
    the guest.  Source mounts become additional volumes below the root.
    """

    def __init__(
        self,
        image: str = DEFAULT_IMAGE,
        platform: str | None = None,
        extra_volumes: Mapping[str, str] | None = None,
    ) -> None:
        """Configure the engine.

        Args:
            image: Container image providing the studio userland.
            platform: Optional ``docker --platform`` value to request a
                specific architecture when pulling the image.
            extra_volumes: Further host paths mounted at the same location
                in the guest (typically the package store, read-only).
        """
        super().__init__()
        self.image = image
        self.platform = platform
        self.extra_volumes = dict(extra_volumes or {})
        self._counter = itertools.count()
        self._names: Dict[Path, Set[str]] = {}

    def _container_name(self, root: Path) -> str:
        digest = hashlib.sha1(str(root).encode()).hexdigest()[:12]
        return f"studiokit-{digest}-{os.getpid()}-{next(self._counter)}"

    def command(
        self,
        args: Sequence[str],
        *,
        root: Path,
        mounts: Mapping[str, str],
        env: Mapping[str, str],
        cwd: Path | None,
        name: str,
        interactive: bool = False,
    ) -> list[str]:
        """Return the ``docker run`` vector for *args*."""
        cmd: list[str] = ["docker", "run", "--rm", "-i", "--name", name]
        if interactive:
            cmd.append("-t")
        if self.platform:
            cmd += ["--platform", self.platform]
        cmd += ["-v", f"{root}:{root}"]
        for host, guest in mounts.items():
            cmd += ["-v", f"{host}:{root / guest}"]
        for host, guest in self.extra_volumes.items():
            cmd += ["-v", f"{host}:{guest}"]
        for key, value in env.items():
            cmd += ["-e", f"{key}={value}"]
        cmd += ["-w", str(cwd or root)]
        cmd.append(self.image)
        cmd.extend(str(a) for a in args)
        return cmd

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
        """Execute *args* in a throw-away container bound to *root*."""
        name = self._container_name(root)
        cmd = self.command(args, root=root, mounts=mounts, env=env, cwd=cwd, name=name)
        with self._lock:
            self._names.setdefault(root, set()).add(name)
        log.info("docker.run", image=self.image, name=name, args=list(args)[:3])
        try:
            # The docker client itself runs with the caller's environment.
            status = self._spawn(cmd, root=root, env=None, cwd=None, capture=capture)
        finally:
            with self._lock:
                self._names.get(root, set()).discard(name)
        if not status.ok:
            log.error("docker.failed", image=self.image, returncode=status.returncode)
        return status

    def terminate(self, root: Path, *, grace: float = 5.0) -> None:
        """Kill the studio's containers, then the local client processes."""
        with self._lock:
            names = sorted(self._names.pop(root, set()))
        for name in names:
            subprocess.run(
                ["docker", "kill", name],
                check=False,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            log.info("docker.killed", name=name)
        super().terminate(root, grace=grace)
