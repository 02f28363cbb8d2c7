"""
Plan loading and hook resolution.

:func:`load` accepts every form a plan can take and returns a validated
:class:`~studiokit.plan.schema.Plan`:

* a plan directory containing ``plan.yaml`` / ``plan.yml`` / ``plan.sh``
  (first match wins, in that order);
* a path to one of those files;
* an already-parsed mapping (used by tests and by :class:`PlanIndex`).

Both file formats are normalised to the same mapping shape before
validation, so YAML and shell plans share every invariant check.  All
functions here are pure transforms of declarative input.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from studiokit.errors import MalformedPlan, NoBuildStep

from .schema import DEFAULT_HOOKS, HookBody, HookName, OverrideRule, Plan
from .shell import parse_plan_sh

PLAN_FILENAMES = ("plan.yaml", "plan.yml", "plan.sh")

_PLAN_KEYS = {
    "pkg_name",
    "pkg_origin",
    "pkg_version",
    "pkg_maintainer",
    "pkg_license",
    "pkg_source",
    "pkg_shasum",
    "pkg_gpg_key",
    "pkg_binary_path",
    "pkg_deps",
    "pkg_build_deps",
    "pkg_patches",
}
_DEFAULT_CALL_RE = re.compile(r"^\s*do_default_(\w+)\s*$")


class PlanLoader(yaml.SafeLoader):
    """SafeLoader that keeps numeric and date scalars as text.

    Versions such as ``2.0`` or ``1.10`` must survive verbatim, so the number
    and date resolvers are dropped.
    """


_NUMERIC_TAGS = {
    "tag:yaml.org,2002:int",
    "tag:yaml.org,2002:float",
    "tag:yaml.org,2002:timestamp",
}
PlanLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in _NUMERIC_TAGS]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
def find_plan_file(path: Path) -> Path:
    """Return the plan file for *path* (a directory or the file itself).

    Raises:
        MalformedPlan: When no plan file exists.
    """
    path = Path(path).expanduser()
    if path.is_file():
        return path
    for fname in PLAN_FILENAMES:
        candidate = path / fname
        if candidate.is_file():
            return candidate
    raise MalformedPlan(f"No plan file found in {path}")


def _parse_hook(stage: HookName, raw: Any) -> HookBody:
    """Normalise a YAML/shell hook body into a :class:`HookBody`."""
    if isinstance(raw, str):
        raw = {"script": raw}
    if not isinstance(raw, Mapping):
        raise MalformedPlan(f"{stage.slot}: hook body must be a script or a mapping")

    unknown = set(raw) - {"default", "patches", "script"}
    if unknown:
        raise MalformedPlan(f"{stage.slot}: unknown hook key(s) {', '.join(sorted(unknown))}")

    calls_default = bool(raw.get("default", False))
    script = raw.get("script")
    if script is not None:
        lines = str(script).splitlines()
        # A leading ``do_default_<stage>`` line means "run the default first".
        for idx, line in enumerate(lines):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            match = _DEFAULT_CALL_RE.match(line)
            if match:
                if HookName.parse(match.group(1)) is not stage:
                    raise MalformedPlan(
                        f"{stage.slot} calls the default of another stage ({stripped})"
                    )
                calls_default = True
                del lines[idx]
            break
        script = "\n".join(lines).strip() or None

    patches = raw.get("patches") or []
    if isinstance(patches, str):
        patches = [patches]
    return HookBody(
        stage=stage,
        script=script,
        patches=tuple(str(p) for p in patches),
        calls_default=calls_default,
    )


def _normalise(doc: Mapping[str, Any], context: Path | None) -> dict[str, Any]:
    """Split a raw document into plan fields, hooks and override rules."""
    fields: dict[str, Any] = {}
    hooks: dict[HookName, HookBody] = {}
    overrides: list[OverrideRule] = []

    for key, value in doc.items():
        if not isinstance(key, str):
            # YAML 1.1 reads ``on``/``yes``/``1`` as bool or int
            raise MalformedPlan(f"Plan field names must be strings, got {key!r}")
        if key.startswith("do_"):
            stage = HookName.parse(key)  # UnknownHook for anything else
            hooks[stage] = _parse_hook(stage, value)
        elif key == "overrides":
            for rule in value or []:
                try:
                    overrides.append(OverrideRule.model_validate(rule))
                except ValidationError as exc:
                    raise MalformedPlan(f"Invalid override rule – {exc}") from exc
        elif key in _PLAN_KEYS:
            fields[key] = value
        else:
            raise MalformedPlan(f"Unknown plan field {key!r}")

    fields["hooks"] = hooks
    fields["overrides"] = overrides
    fields["context"] = context
    return fields


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def load(source: str | Path | Mapping[str, Any], *, context: Path | None = None) -> Plan:
    """Return a validated :class:`Plan`.

    Args:
        source: Plan directory, plan file or parsed mapping.
        context: Plan directory for mapping input (patch files and
            ``PLAN_CONTEXT`` resolve against it).  Derived automatically for
            path input.

    Raises:
        MalformedPlan: When required fields are missing or malformed.
        ChecksumMissing: When ``pkg_source`` lacks ``pkg_shasum``.
        UnknownHook: When a ``do_*`` slot outside the lifecycle is declared.
    """
    if isinstance(source, Mapping):
        doc: Any = source
    else:
        plan_file = find_plan_file(Path(source))
        context = plan_file.parent.resolve()
        text = plan_file.read_text()
        if plan_file.suffix == ".sh":
            doc = parse_plan_sh(text)
        else:
            try:
                doc = yaml.load(text, Loader=PlanLoader) or {}
            except yaml.YAMLError as exc:
                raise MalformedPlan(f"{plan_file}: {exc}") from exc

    if not isinstance(doc, Mapping):
        raise MalformedPlan("Plan document must be a mapping")

    fields = _normalise(doc, context)
    try:
        return Plan.model_validate(fields)
    except ValidationError as exc:
        raise MalformedPlan(f"Invalid plan – {exc}") from exc


def resolve_hook(plan: Plan, hook_name: str | HookName) -> HookBody:
    """Return *plan*'s body for *hook_name*, else the built-in default.

    Raises:
        UnknownHook: When *hook_name* is not a lifecycle stage.
    """
    stage = HookName.parse(hook_name)
    return plan.declared_hook(stage) or DEFAULT_HOOKS[stage]


def ensure_buildable(plan: Plan, *, src_mounted: bool = False) -> None:
    """Fail fast when the plan has no way to produce a build.

    A plan needs either its own ``do_build`` hook or something the default
    build can work on: a downloadable ``pkg_source`` or a mounted source tree.

    Raises:
        NoBuildStep: When none of the above is available.
    """
    if plan.declared_hook(HookName.BUILD) or plan.source or src_mounted:
        return
    raise NoBuildStep(
        f"{plan.ident}: no do_build hook, no pkg_source and no source mount"
    )


__all__ = [
    "PLAN_FILENAMES",
    "PlanLoader",
    "ensure_buildable",
    "find_plan_file",
    "load",
    "resolve_hook",
]
