"""
Reader for the declarative subset of shell ``plan.sh`` files.

Only the constructs a plan needs are recognised:

* ``pkg_*`` assignments, scalar (``pkg_name=findutils``) or array
  (``pkg_deps=(chef/glibc)``), arrays may span several lines;
* hook functions ``do_<stage>() { … }`` whose closing brace sits in column 0;
* the stage1 bootstrap block::

      if [[ "$STUDIO_TYPE" = "stage1" ]]; then
        pkg_build_deps=(chef/gcc chef/coreutils)
      fi

  which becomes an override rule keyed on ``studio_type``.

Everything else is rejected; plans are data, not programs.  The result is a
plain mapping in the same shape as a YAML plan so both formats share
:func:`studiokit.plan.loader.load` validation.
"""

from __future__ import annotations

import re
import shlex
import textwrap
from typing import Any

from studiokit.errors import MalformedPlan

_ASSIGN_RE = re.compile(r"^(pkg_\w+)=(.*)$")
_FUNC_RE = re.compile(r"^(do_\w+)\s*\(\)\s*\{\s*$")
_IF_RE = re.compile(
    r"""^if\s+\[\[?\s*["']?\$\{?(\w+)\}?["']?\s*==?\s*["']?([\w.-]+)["']?\s*\]\]?\s*;\s*then\s*$"""
)
# Ambient variables an ``if`` block may test → SessionConfig field.
_PREDICATE_VARS = {"STUDIO_TYPE": "studio_type"}


def _words(text: str, lineno: int) -> list[str]:
    try:
        return shlex.split(text, comments=True)
    except ValueError as exc:
        raise MalformedPlan(f"plan.sh:{lineno}: {exc}") from exc


def _read_assignment(lines: list[str], idx: int) -> tuple[str, Any, int]:
    """Parse the assignment starting at *idx*; return key, value, next index."""
    match = _ASSIGN_RE.match(lines[idx].strip())
    assert match is not None
    key, rhs = match.group(1), match.group(2)
    if rhs.startswith("("):
        buf = rhs
        end = idx
        while ")" not in _strip_comment(buf):
            end += 1
            if end >= len(lines):
                raise MalformedPlan(f"plan.sh:{idx + 1}: unterminated array for {key}")
            buf += "\n" + lines[end]
        inner = _strip_comment(buf)
        inner = inner[inner.index("(") + 1 : inner.rindex(")")]
        return key, _words(inner, idx + 1), end + 1
    words = _words(rhs, idx + 1)
    if len(words) > 1:
        raise MalformedPlan(f"plan.sh:{idx + 1}: unquoted whitespace in {key}")
    return key, words[0] if words else "", idx + 1


def _strip_comment(text: str) -> str:
    out = []
    for line in text.splitlines():
        quoted = False
        for pos, ch in enumerate(line):
            if ch in "'\"":
                quoted = not quoted
            elif ch == "#" and not quoted and (pos == 0 or line[pos - 1].isspace()):
                line = line[:pos]
                break
        out.append(line)
    return "\n".join(out)


def _read_function(lines: list[str], idx: int) -> tuple[str, str, int]:
    """Return hook name, dedented body and the index after the closing brace."""
    name = _FUNC_RE.match(lines[idx].strip()).group(1)  # type: ignore[union-attr]
    body: list[str] = []
    end = idx + 1
    while end < len(lines) and lines[end].rstrip() != "}":
        body.append(lines[end])
        end += 1
    if end >= len(lines):
        raise MalformedPlan(f"plan.sh:{idx + 1}: function {name} is not closed")
    return name, textwrap.dedent("\n".join(body)).strip(), end + 1


def _read_if_block(lines: list[str], idx: int) -> tuple[dict[str, Any], int]:
    """Turn an ``if [[ "$VAR" = value ]]`` block into an override rule."""
    match = _IF_RE.match(lines[idx].strip())
    if match is None:
        raise MalformedPlan(f"plan.sh:{idx + 1}: unsupported condition {lines[idx].strip()!r}")
    var, value = match.groups()
    if var not in _PREDICATE_VARS:
        raise MalformedPlan(f"plan.sh:{idx + 1}: overrides may only test {sorted(_PREDICATE_VARS)}")

    replace: dict[str, Any] = {}
    pos = idx + 1
    while pos < len(lines):
        stripped = lines[pos].strip()
        if stripped == "fi":
            return {"when": {_PREDICATE_VARS[var]: value}, "set": replace}, pos + 1
        if not stripped or stripped.startswith("#"):
            pos += 1
            continue
        if not _ASSIGN_RE.match(stripped):
            raise MalformedPlan(f"plan.sh:{pos + 1}: only pkg_* assignments are allowed in overrides")
        key, val, pos = _read_assignment(lines, pos)
        replace[key] = val if isinstance(val, list) else [val]
    raise MalformedPlan(f"plan.sh:{idx + 1}: 'if' block is not closed")


def parse_plan_sh(text: str) -> dict[str, Any]:
    """Parse *text* into a plan mapping.

    Raises:
        MalformedPlan: On any construct outside the supported subset.
    """
    lines = text.splitlines()
    doc: dict[str, Any] = {}
    overrides: list[dict[str, Any]] = []
    idx = 0
    while idx < len(lines):
        stripped = lines[idx].strip()
        if not stripped or stripped.startswith("#"):
            idx += 1
        elif _ASSIGN_RE.match(stripped):
            key, value, idx = _read_assignment(lines, idx)
            doc[key] = value
        elif _FUNC_RE.match(stripped):
            name, body, idx = _read_function(lines, idx)
            doc[name] = body
        elif stripped.startswith("if "):
            rule, idx = _read_if_block(lines, idx)
            overrides.append(rule)
        else:
            raise MalformedPlan(f"plan.sh:{idx + 1}: unsupported statement {stripped!r}")
    if overrides:
        doc["overrides"] = overrides
    return doc
