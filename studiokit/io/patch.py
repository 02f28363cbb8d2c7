"""Patch application inside a studio."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

import structlog

from studiokit.errors import PatchRejected

if TYPE_CHECKING:  # pragma: no cover
    from studiokit.studio import Studio, StudioManager

log = structlog.get_logger()


class PatchApplier(ABC):
    """Apply one patch file to a source tree."""

    @abstractmethod
    def apply(self, patch: Path, tree: Path) -> None:
        """Apply *patch* to *tree*.

        Raises:
            PatchRejected: When the patch does not apply cleanly.
        """
        raise NotImplementedError


class CommandPatchApplier(PatchApplier):
    """Run ``patch --batch -p1 -i <file>`` inside the studio, with *tree* as cwd.

    ``--batch`` turns the reversed-patch prompt into a failure.
    """

    def __init__(
        self,
        manager: "StudioManager",
        studio: "Studio",
        *,
        strip: int = 1,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.manager = manager
        self.studio = studio
        self.strip = strip
        self.env = dict(env or {})

    def apply(self, patch: Path, tree: Path) -> None:
        if not self.studio.host_path(patch).is_file():
            raise PatchRejected(patch)
        status = self.manager.run(
            self.studio,
            ["patch", "--batch", f"-p{self.strip}", "-i", str(patch)],
            env=self.env,
            cwd=tree,
        )
        if not status.ok:
            log.error("patch.rejected", patch=patch.name, returncode=status.returncode)
            raise PatchRejected(patch, status)
        log.info("patch.applied", patch=patch.name)
