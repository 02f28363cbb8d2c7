"""
Pydantic models that mirror a declarative build plan.

A plan is identity + metadata + dependency lists + a small mapping of hook
slots.  Field aliases follow the ``pkg_*`` names used in plan files so that a
parsed YAML/shell document can be validated directly::

    Plan.model_validate({"pkg_name": "findutils", "pkg_origin": "chef", ...})

Invariants enforced here (all checked before any studio exists):

* ``name``/``origin``/``version`` are valid identifier components.
* ``checksum`` is present whenever ``source`` is.
* dependency lists contain no duplicates and never reference the plan itself.
* an identity listed both as runtime and build dependency is kept only as a
  runtime dependency.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from studiokit.errors import ChecksumMissing, UnknownHook
from studiokit.models import IDENT_PART_PATTERN, PackageIdent, StudioType

log = structlog.get_logger()

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_KNOWN_ALGOS = {"sha1", "sha224", "sha256", "sha384", "sha512", "md5"}

# --------------------------------------------------------------------------- #
# 1.  Hooks                                                                    #
# --------------------------------------------------------------------------- #


class HookName(str, Enum):
    """Closed set of lifecycle stages, in execution order."""

    PREPARE = "prepare"
    BUILD = "build"
    CHECK = "check"
    INSTALL = "install"

    @classmethod
    def parse(cls, name: "str | HookName") -> "HookName":
        """Accept ``build``/``do_build``/:class:`HookName` spellings.

        Raises:
            UnknownHook: For names outside the lifecycle.
        """
        if isinstance(name, HookName):
            return name
        key = str(name).strip()
        key = key[3:] if key.startswith("do_") else key
        try:
            return cls(key)
        except ValueError:
            raise UnknownHook(str(name)) from None

    @property
    def slot(self) -> str:
        """Plan-file key for this stage (``do_<stage>``)."""
        return f"do_{self.value}"


class HookBody(BaseModel, frozen=True):
    """Body of one hook slot.

    Attributes:
        stage: Stage the body belongs to.
        script: Shell script run inside the studio, if any.
        patches: Patch files (relative to the plan directory) applied in
            order before *script*.
        calls_default: Run the built-in default body first.
        builtin: This *is* the built-in default body.
    """

    stage: HookName
    script: Optional[str] = None
    patches: Tuple[str, ...] = ()
    calls_default: bool = False
    builtin: bool = False


DEFAULT_HOOKS: Dict[HookName, HookBody] = {
    stage: HookBody(stage=stage, builtin=True) for stage in HookName
}

# --------------------------------------------------------------------------- #
# 2.  Environment override rules                                               #
# --------------------------------------------------------------------------- #

OVERRIDABLE_FIELDS = {
    "pkg_build_deps": "build_deps",
    "pkg_deps": "runtime_deps",
    "pkg_binary_path": "binary_path",
}
PREDICATE_KEYS = {"studio_type", "verbosity", "no_src_path"}


class OverrideRule(BaseModel):
    """Predicate over the session config plus replacement plan fields.

    Attributes:
        when: Mapping of config field → required value.  All must match.
        replace: Mapping of ``pkg_*`` field → replacement list.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    when: Dict[str, str]
    replace: Dict[str, Tuple[str, ...]] = Field(alias="set")

    @field_validator("when")
    @classmethod
    def _known_predicates(cls, v: Dict[str, Any]) -> Dict[str, str]:
        unknown = set(v) - PREDICATE_KEYS
        if unknown:
            raise ValueError("Unknown override predicate(s): " + ", ".join(sorted(unknown)))
        if not v:
            raise ValueError("Override rule needs at least one predicate")
        return {k: str(val).lower() for k, val in v.items()}

    @field_validator("replace")
    @classmethod
    def _known_fields(cls, v: Dict[str, Any]) -> Dict[str, Tuple[str, ...]]:
        unknown = set(v) - set(OVERRIDABLE_FIELDS)
        if unknown:
            raise ValueError("Fields cannot be overridden: " + ", ".join(sorted(unknown)))
        return v

    def matches(self, values: Dict[str, str]) -> bool:
        """Return ``True`` when every predicate equals the config value."""
        for key, expected in self.when.items():
            if key == "studio_type":
                # Accept aliases such as ``stage1`` on either side.
                try:
                    expected = StudioType(expected).value
                except ValueError:
                    return False
            if values.get(key) != expected:
                return False
        return True


# --------------------------------------------------------------------------- #
# 3.  Plan                                                                     #
# --------------------------------------------------------------------------- #


class Plan(BaseModel):
    """Validated build plan."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(alias="pkg_name", pattern=IDENT_PART_PATTERN)
    origin: str = Field(alias="pkg_origin", pattern=IDENT_PART_PATTERN)
    version: str = Field(alias="pkg_version", pattern=IDENT_PART_PATTERN)
    maintainer: Optional[str] = Field(None, alias="pkg_maintainer")
    license: Tuple[str, ...] = Field((), alias="pkg_license")
    source: Optional[str] = Field(None, alias="pkg_source")
    checksum: Optional[str] = Field(None, alias="pkg_shasum")
    signing_key: Optional[str] = Field(None, alias="pkg_gpg_key")
    binary_path: Tuple[str, ...] = Field((), alias="pkg_binary_path")
    runtime_deps: Tuple[PackageIdent, ...] = Field((), alias="pkg_deps")
    build_deps: Tuple[PackageIdent, ...] = Field((), alias="pkg_build_deps")
    patches: Tuple[str, ...] = Field((), alias="pkg_patches")

    hooks: Dict[HookName, HookBody] = Field(default_factory=dict)
    overrides: Tuple[OverrideRule, ...] = ()
    context: Optional[Path] = None

    # --------------------------- validators ------------------------------ #
    @model_validator(mode="before")
    @classmethod
    def _parse_deps(cls, values: Any):
        """Turn ``origin/name`` strings (or bare names) into identifiers."""
        if not isinstance(values, dict):
            return values
        values = dict(values)
        origin = values.get("pkg_origin", values.get("origin"))
        for alias, field in (("pkg_deps", "runtime_deps"), ("pkg_build_deps", "build_deps")):
            key = alias if alias in values else field
            raw = values.get(key)
            if raw is None:
                continue
            if isinstance(raw, str):
                raw = raw.split()
            values[key] = [
                PackageIdent.parse(d, default_origin=origin) if isinstance(d, str) else d
                for d in raw
            ]
        _collapse_overlap(values)
        for key in ("pkg_license", "license", "pkg_binary_path", "binary_path"):
            if isinstance(values.get(key), str):
                values[key] = [values[key]]
        return values

    @field_validator("checksum")
    @classmethod
    def _qualify_checksum(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not str(v).strip():
            return None
        algo, _, digest = str(v).strip().rpartition(":")
        algo = (algo or "sha256").lower()
        if algo not in _KNOWN_ALGOS or not _HEX_RE.match(digest):
            raise ValueError(f"malformed checksum {v!r}")
        return f"{algo}:{digest.lower()}"

    @model_validator(mode="after")
    def _invariants(self):
        if self.source and not self.checksum:
            raise ChecksumMissing(f"{self.origin}/{self.name}: pkg_source declared without pkg_shasum")

        own = (self.origin, self.name)
        for label, deps in (("pkg_deps", self.runtime_deps), ("pkg_build_deps", self.build_deps)):
            seen: set[str] = set()
            for dep in deps:
                if (dep.origin, dep.name) == own:
                    raise ValueError(f"{label} references the plan itself")
                if dep.key in seen:
                    raise ValueError(f"{label} lists {dep.key} more than once")
                seen.add(dep.key)

        return self

    # --------------------------- convenience ----------------------------- #
    @property
    def ident(self) -> PackageIdent:
        """``origin/name/version`` identity of this plan."""
        return PackageIdent(origin=self.origin, name=self.name, version=self.version)

    @property
    def source_url(self) -> Optional[str]:
        """``pkg_source`` with ``$pkg_name``-style placeholders substituted."""
        if self.source is None:
            return None
        return Template(self.source).safe_substitute(
            pkg_name=self.name, pkg_origin=self.origin, pkg_version=self.version
        )

    def declared_hook(self, stage: HookName) -> Optional[HookBody]:
        """Return the plan's own body for *stage* or ``None``."""
        return self.hooks.get(stage)


def _collapse_overlap(values: dict) -> None:
    """Drop build deps that are also runtime deps (runtime is the stronger kind)."""
    runtime_key = "pkg_deps" if "pkg_deps" in values else "runtime_deps"
    build_key = "pkg_build_deps" if "pkg_build_deps" in values else "build_deps"
    runtime = values.get(runtime_key) or []
    build = values.get(build_key) or []
    runtime_keys = {d.key for d in runtime if isinstance(d, PackageIdent)}
    overlap = [d.key for d in build if isinstance(d, PackageIdent) and d.key in runtime_keys]
    if overlap:
        log.warning("plan.dep_kind_collapsed", plan=values.get("pkg_name"), deps=overlap)
        values[build_key] = [
            d for d in build if not (isinstance(d, PackageIdent) and d.key in runtime_keys)
        ]
