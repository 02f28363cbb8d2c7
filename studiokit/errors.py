"""
Exception hierarchy shared by every layer of *studiokit*.

All errors derive from :class:`StudioKitError` so the CLI can translate any of
them into a single ``click.ClickException`` while library callers can still
catch a precise subclass.

Grouping
--------
* :class:`PlanError` – detected while loading/validating a plan, before any
  studio is provisioned.
* :class:`DependencyError` – raised by the resolver, before any stage runs.
* :class:`SourceError` / :class:`PatchRejected` – raised by the external
  collaborators during ``prepare``.
* :class:`StageFailed` – wraps whatever made a lifecycle stage fail.
* :class:`StoreError` – package store install problems.
* :class:`StudioError` – misuse of a studio session.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from studiokit.engines.base import ExitStatus


class StudioKitError(Exception):
    """Base class for every error raised by studiokit."""


# --------------------------------------------------------------------------- #
# Plan validation                                                             #
# --------------------------------------------------------------------------- #
class PlanError(StudioKitError):
    """A plan could not be loaded or is unusable."""


class MalformedPlan(PlanError):
    """Required fields are missing or have the wrong shape."""


class ChecksumMissing(PlanError):
    """``pkg_source`` is declared without a matching ``pkg_shasum``."""


class UnknownHook(PlanError):
    """A hook name outside the fixed lifecycle was requested or declared."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown hook {name!r}")
        self.name = name


class NoBuildStep(PlanError):
    """Neither a ``do_build`` hook nor a usable default build exists."""


# --------------------------------------------------------------------------- #
# Dependency resolution                                                       #
# --------------------------------------------------------------------------- #
class DependencyError(StudioKitError):
    """Dependency resolution failed."""


class CyclicDependency(DependencyError):
    """A back-edge was found while walking the dependency graph."""

    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__("Dependency cycle: " + " -> ".join(cycle))
        self.cycle = list(cycle)


class UnknownDependency(DependencyError):
    """A dependency is neither installed nor available as a plan."""

    def __init__(self, ident: str, required_by: str) -> None:
        super().__init__(f"Unknown dependency {ident} (required by {required_by})")
        self.ident = ident
        self.required_by = required_by


class UnsatisfiedDependency(DependencyError):
    """Resolved dependencies are missing from the package store."""

    def __init__(self, idents: Sequence[str]) -> None:
        super().__init__(
            "Dependencies not installed in the package store: " + ", ".join(idents)
        )
        self.idents = list(idents)


# --------------------------------------------------------------------------- #
# External collaborators                                                      #
# --------------------------------------------------------------------------- #
class SourceError(StudioKitError):
    """Source download or verification failed."""


class FetchFailed(SourceError):
    """The source could not be downloaded."""


class ChecksumMismatch(SourceError):
    """The downloaded source does not match ``pkg_shasum``."""

    def __init__(self, path: Path, expected: str, actual: str) -> None:
        super().__init__(f"Checksum mismatch for {path.name}: expected {expected}, got {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


class PatchRejected(StudioKitError):
    """A patch did not apply cleanly."""

    def __init__(self, patch: Path, status: "ExitStatus | None" = None) -> None:
        detail = f" (exit {status.returncode})" if status is not None else ""
        super().__init__(f"Patch {patch.name} was rejected{detail}")
        self.patch = patch
        self.status = status


# --------------------------------------------------------------------------- #
# Lifecycle                                                                   #
# --------------------------------------------------------------------------- #
class StageFailed(StudioKitError):
    """A lifecycle stage failed; no later stage was executed.

    Attributes:
        stage: Name of the failing stage (``prepare``, ``build``…).
        status: Process outcome of the failing command, when one ran.
        cause: Underlying exception, when the failure was not a plain
            non-zero exit.
        cancelled: ``True`` when the studio was destroyed mid-stage.
    """

    def __init__(
        self,
        stage: str,
        status: "ExitStatus | None" = None,
        cause: BaseException | None = None,
        *,
        cancelled: bool = False,
    ) -> None:
        parts = [f"Stage '{stage}' failed"]
        if cancelled:
            parts.append("(studio destroyed)")
        if status is not None:
            parts.append(f"[{status.describe()}]")
        if cause is not None:
            parts.append(f": {cause}")
        super().__init__(" ".join(parts))
        self.stage = stage
        self.status = status
        self.cause = cause
        self.cancelled = cancelled


# --------------------------------------------------------------------------- #
# Package store                                                               #
# --------------------------------------------------------------------------- #
class StoreError(StudioKitError):
    """Package store operation failed."""


class AlreadyInstalled(StoreError):
    """The identical artifact is already installed (non-fatal)."""

    def __init__(self, ident: str) -> None:
        super().__init__(f"{ident} is already installed")
        self.ident = ident


class CorruptArtifact(StoreError):
    """Artifact content does not match its identity or checksum."""


# --------------------------------------------------------------------------- #
# Studio sessions                                                             #
# --------------------------------------------------------------------------- #
class StudioError(StudioKitError):
    """Studio session misuse."""


class StudioBusy(StudioError):
    """Another owner is running inside the same studio root."""

    def __init__(self, root: Path) -> None:
        super().__init__(f"Studio {root} is in use by another build")
        self.root = root


class InvalidStudioState(StudioError):
    """The requested operation is not valid in the studio's current state."""
