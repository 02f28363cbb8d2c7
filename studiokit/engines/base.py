"""Execution back-ends for running commands inside a studio."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Set, Tuple

import structlog
from pydantic import BaseModel

log = structlog.get_logger()

# Captured output kept on an ExitStatus (characters).
OUTPUT_TAIL = 4000


class ExitStatus(BaseModel, frozen=True):
    """Outcome of one process run inside a studio.

    Attributes:
        args: Command vector that was executed.
        returncode: Exit code; negative values are the terminating signal.
        output: Tail of the combined stdout/stderr when output was captured.
    """

    args: Tuple[str, ...]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def signal(self) -> Optional[int]:
        return -self.returncode if self.returncode < 0 else None

    def describe(self) -> str:
        """Short human-readable summary (``exit 2`` / ``killed by SIGTERM``)."""
        if self.signal is not None:
            try:
                name = signal.Signals(self.signal).name
            except ValueError:
                name = str(self.signal)
            return f"killed by {name}"
        return f"exit {self.returncode}"


class ExecutionEngine(ABC):
    """Abstract execution engine.

    Concrete implementations launch processes (host processes, Docker
    containers…) on behalf of a studio.  Every process runs in its own
    process group and is tracked per studio root so that
    :meth:`terminate` can stop everything a studio started.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._procs: Dict[Path, Set[subprocess.Popen]] = {}

    # ------------------------------------------------------------------ #
    # Interface                                                          #
    # ------------------------------------------------------------------ #
    @abstractmethod
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
        """Run *args* inside the studio at *root*.

        Args:
            args: Command vector.
            root: Studio root; processes are tracked under this key.
            mounts: Mapping of host path → path relative to *root*.
            env: Complete process environment (nothing is inherited).
            cwd: Working directory; defaults to *root*.
            capture: Capture combined output instead of streaming it.

        Returns:
            :class:`ExitStatus` of the process.
        """
        raise NotImplementedError

    def release_mounts(self, root: Path, mounts: Mapping[str, str]) -> None:
        """Undo whatever :meth:`run` did to realise *mounts*."""

    def terminate(self, root: Path, *, grace: float = 5.0) -> None:
        """Stop every process group started for *root*.

        Sends ``SIGTERM`` to each group, waits up to *grace* seconds, then
        escalates to ``SIGKILL``.
        """
        with self._lock:
            procs = list(self._procs.get(root, ()))
        for proc in procs:
            self._signal_group(proc, signal.SIGTERM)
        for proc in procs:
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                log.warning("engine.kill", root=str(root), pid=proc.pid)
                self._signal_group(proc, signal.SIGKILL)
                proc.wait()
        if procs:
            log.info("engine.terminated", root=str(root), count=len(procs))

    # ------------------------------------------------------------------ #
    # Helpers for subclasses                                             #
    # ------------------------------------------------------------------ #
    def _spawn(
        self,
        cmd: Sequence[str],
        *,
        root: Path,
        env: Mapping[str, str] | None,
        cwd: Path | None,
        capture: bool,
    ) -> ExitStatus:
        """Start *cmd* in a new process group and wait for it."""
        cmd = [str(c) for c in cmd]
        proc = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE if capture else None,
            stderr=subprocess.STDOUT if capture else None,
            text=True,
            start_new_session=True,
        )
        with self._lock:
            self._procs.setdefault(root, set()).add(proc)
        try:
            out, _ = proc.communicate()
        finally:
            with self._lock:
                live = self._procs.get(root)
                if live is not None:
                    live.discard(proc)
                    if not live:
                        del self._procs[root]
        return ExitStatus(
            args=tuple(cmd),
            returncode=proc.returncode,
            output=(out or "")[-OUTPUT_TAIL:],
        )

    def running(self, root: Path) -> int:
        """Number of live processes started for *root*."""
        with self._lock:
            return len(self._procs.get(root, ()))

    @staticmethod
    def _signal_group(proc: subprocess.Popen, sig: signal.Signals) -> None:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
