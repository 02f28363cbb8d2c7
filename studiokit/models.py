"""
Domain-level value objects shared across the plan, resolver, studio and store
layers.

The module provides:

* **`PackageIdent`** – ``origin/name[/version[/release]]`` identifiers with
  parsing, rendering and "does this installed package satisfy that
  declaration" matching.
* **`StudioType`** – the fixed enumeration of studio flavours, including the
  legacy spellings accepted on the command line.
* **`Verbosity`** – console verbosity shared by the CLI and the engines.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

# --------------------------------------------------------------------------- #
# 1 – Identifiers
# --------------------------------------------------------------------------- #

IDENT_PART_PATTERN = r"^[A-Za-z0-9_.+-]+$"
_PART_RE = re.compile(IDENT_PART_PATTERN)


class PackageIdent(BaseModel, frozen=True):
    """Package identifier.

    Attributes
    ----------
    origin
        Publishing origin, e.g. ``"chef"``.
    name
        Package name, e.g. ``"findutils"``.
    version
        Optional upstream version. ``None`` matches any version.
    release
        Optional build release (``YYYYMMDDHHMMSS``). ``None`` matches any
        release.
    """

    origin: str
    name: str
    version: Optional[str] = None
    release: Optional[str] = None

    @field_validator("origin", "name")
    @classmethod
    def _required_part(cls, v: str) -> str:
        if not v or not _PART_RE.match(v):
            raise ValueError(f"invalid identifier component {v!r}")
        return v

    @field_validator("version", "release")
    @classmethod
    def _optional_part(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _PART_RE.match(v):
            raise ValueError(f"invalid identifier component {v!r}")
        return v

    @classmethod
    def parse(cls, text: str, *, default_origin: str | None = None) -> "PackageIdent":
        """Parse ``origin/name[/version[/release]]``.

        Args:
            text: Identifier string.
            default_origin: Origin used when *text* is a bare ``name``.

        Raises:
            ValueError: When *text* has too many/few components.
        """
        parts = [p for p in str(text).strip().split("/")]
        if len(parts) == 1 and default_origin:
            parts = [default_origin, parts[0]]
        if not 2 <= len(parts) <= 4 or any(not p for p in parts):
            raise ValueError(f"invalid package identifier {text!r}")
        origin, name, *rest = parts
        version = rest[0] if rest else None
        release = rest[1] if len(rest) > 1 else None
        return cls(origin=origin, name=name, version=version, release=release)

    # ------------------------------------------------------------------ #
    @property
    def fully_qualified(self) -> bool:
        """``True`` when both version and release are present."""
        return self.version is not None and self.release is not None

    @property
    def key(self) -> str:
        """``origin/name`` – the unversioned part used for plan lookup."""
        return f"{self.origin}/{self.name}"

    def matches(self, other: "PackageIdent") -> bool:
        """Return ``True`` when *other* satisfies this (possibly partial) ident."""
        if (self.origin, self.name) != (other.origin, other.name):
            return False
        if self.version is not None and self.version != other.version:
            return False
        if self.release is not None and self.release != other.release:
            return False
        return True

    def with_release(self, release: str) -> "PackageIdent":
        """Return a copy carrying *release*."""
        return self.model_copy(update={"release": release})

    def __str__(self) -> str:
        return "/".join(
            p for p in (self.origin, self.name, self.version, self.release) if p
        )


# --------------------------------------------------------------------------- #
# 2 – Enumerations
# --------------------------------------------------------------------------- #

class StudioType(str, Enum):
    """Flavours of build studio."""

    BASELINE = "baseline"
    FULL = "full"
    SLIM = "slim"
    MINIMAL = "minimal"
    BOOTSTRAP = "bootstrap"

    @classmethod
    def _missing_(cls, value):
        # ``default`` and ``stage1`` are the historical spellings.
        aliases = {"default": cls.FULL, "stage1": cls.BOOTSTRAP}
        if isinstance(value, str):
            return aliases.get(value.lower()) or cls.__members__.get(value.upper())
        return None


class Verbosity(str, Enum):
    """Console verbosity levels."""

    QUIET = "quiet"
    NORMAL = "normal"
    VERBOSE = "verbose"
