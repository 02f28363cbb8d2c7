"""
Pydantic model for the per-invocation studio configuration.

A :class:`SessionConfig` is built exactly once per invocation by
:func:`studiokit.config.loader.load_session_config` and then passed by value
through the resolver, the studio manager and the lifecycle engine.  Nothing
downstream reads ambient process state.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from studiokit.models import StudioType, Verbosity


def studio_slug(src_path: Path) -> str:
    """Return the directory name used for a studio rooted on *src_path*.

    ``/home/me/src/app`` becomes ``home--me--src--app`` so that different
    source trees never share a studio root.
    """
    text = str(src_path).strip("/")
    return text.replace("/", "--") or "root"


class SessionConfig(BaseModel):
    """Immutable, validated studio configuration.

    Attributes:
        no_src_path: Suppress mounting ``src_path`` into the studio.
        src_path: Host directory mounted at ``<root>/src``.
        studio_root: Explicit studio root.  ``None`` derives one from
            ``studios_home`` and ``src_path``.
        studios_home: Parent directory of derived studio roots.
        studio_type: Studio flavour, see :class:`StudioType`.
        verbosity: Console verbosity.
        store_root: Package store location.
        results_dir: Where built artifacts are written.
    """

    model_config = ConfigDict(frozen=True)

    no_src_path: bool = False
    src_path: Path = Field(default_factory=Path.cwd)
    studio_root: Optional[Path] = None
    studios_home: Path = Path("~/.studiokit/studios")
    studio_type: StudioType = StudioType.FULL
    verbosity: Verbosity = Verbosity.NORMAL
    store_root: Path = Path("~/.studiokit/pkgs")
    results_dir: Path = Path("results")

    @field_validator("src_path", "studio_root", "studios_home", "store_root", "results_dir")
    @classmethod
    def _absolute(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return None
        return Path(v).expanduser().absolute()

    # ------------------------------------------------------------------ #
    @property
    def root(self) -> Path:
        """Effective studio root."""
        if self.studio_root is not None:
            return self.studio_root
        return self.studios_home / studio_slug(self.src_path)

    @property
    def quiet(self) -> bool:
        return self.verbosity is Verbosity.QUIET

    @property
    def verbose(self) -> bool:
        return self.verbosity is Verbosity.VERBOSE

    def as_predicate_values(self) -> dict[str, str]:
        """Flatten the config into the string values override rules test."""
        return {
            "studio_type": self.studio_type.value,
            "verbosity": self.verbosity.value,
            "no_src_path": str(self.no_src_path).lower(),
        }
