"""
Layered configuration loader.

:func:`load_session_config` merges three layers into one
:class:`~studiokit.config.session.SessionConfig`.

Precedence (highest first)
1. Explicit flags passed by the caller (CLI options).
2. The process environment snapshot (``STUDIO_TYPE``, ``SRC_PATH``…).
3. The packaged ``defaults.yaml`` (or an explicit *defaults_path*).

Verbosity is resolved per layer: the highest layer that says anything about
quiet/verbose decides, and inside a single layer *verbose* beats *quiet*.
"""

from __future__ import annotations

import os
from importlib.resources import as_file, files
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog
import yaml
from pydantic import ValidationError

from studiokit.errors import StudioKitError
from studiokit.models import Verbosity

from .session import SessionConfig

log = structlog.get_logger()

_DEFAULTS = files("studiokit.resources") / "defaults.yaml"

# Environment variable → SessionConfig field.
ENV_VARS: dict[str, str] = {
    "NO_SRC_PATH": "no_src_path",
    "SRC_PATH": "src_path",
    "STUDIO_ROOT": "studio_root",
    "STUDIO_TYPE": "studio_type",
    "STUDIOS_HOME": "studios_home",
    "STUDIOKIT_STORE": "store_root",
    "STUDIOKIT_RESULTS": "results_dir",
}
_FALSE = {"", "0", "false", "no", "off"}


class ConfigError(StudioKitError):
    """The merged configuration failed validation."""


def _truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() not in _FALSE


def _layer_verbosity(quiet: Any, verbose: Any) -> Optional[Verbosity]:
    """Collapse a layer's quiet/verbose toggles into a verbosity (or ``None``)."""
    if verbose:
        return Verbosity.VERBOSE
    if quiet:
        return Verbosity.QUIET
    return None


def _load_defaults(path: Optional[Path]) -> dict[str, Any]:
    """Read the defaults YAML; an explicit *path* replaces the packaged file."""
    if path is not None:
        return yaml.safe_load(Path(path).read_text()) or {}
    with as_file(_DEFAULTS) as p:
        return yaml.safe_load(p.read_text()) or {}


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    """Translate recognised environment variables into config keys."""
    layer: dict[str, Any] = {}
    for var, key in ENV_VARS.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        layer[key] = _truthy(value) if key == "no_src_path" else value
    verbosity = _layer_verbosity(
        _truthy(environ.get("QUIET")), _truthy(environ.get("VERBOSE"))
    )
    if verbosity is not None:
        layer["verbosity"] = verbosity
    return layer


def _flag_layer(flags: Mapping[str, Any]) -> dict[str, Any]:
    """Drop unset flags (``None``/``False`` toggles) from the explicit layer."""
    layer = {
        k: v
        for k, v in flags.items()
        if v is not None and k not in {"quiet", "verbose"}
    }
    if layer.get("no_src_path") is False:
        layer.pop("no_src_path")
    verbosity = _layer_verbosity(flags.get("quiet"), flags.get("verbose"))
    if verbosity is not None:
        layer["verbosity"] = verbosity
    return layer


def load_session_config(
    *,
    flags: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    defaults_path: Optional[str | Path] = None,
) -> SessionConfig:
    """Return a validated :class:`SessionConfig`.

    Args:
        flags: Explicit per-call settings keyed by ``SessionConfig`` field
            name; ``quiet``/``verbose`` booleans are also accepted.  ``None``
            values mean "not given".
        environ: Environment snapshot.  Defaults to :data:`os.environ`.
        defaults_path: Alternative defaults YAML.

    Raises:
        ConfigError: When the merged document fails validation.
    """
    environ = os.environ if environ is None else environ
    merged: dict[str, Any] = {}
    for name, layer in (
        ("defaults", _load_defaults(Path(defaults_path) if defaults_path else None)),
        ("environment", _env_layer(environ)),
        ("flags", _flag_layer(flags or {})),
    ):
        if layer:
            log.debug("config.layer", layer=name, keys=sorted(layer))
        merged.update(layer)

    try:
        return SessionConfig(**merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration – {exc}") from exc
