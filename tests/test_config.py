"""Tests for the layered session configuration."""

from pathlib import Path

import pytest

from studiokit.config import ConfigError, load_session_config, studio_slug
from studiokit.models import StudioType, Verbosity


def test_packaged_defaults_load():
    """Verify the packaged defaults produce a valid config."""
    cfg = load_session_config(environ={})
    assert cfg.studio_type is StudioType.FULL
    assert cfg.verbosity is Verbosity.NORMAL
    assert cfg.no_src_path is False
    assert cfg.studios_home == Path("~/.studiokit/studios").expanduser().absolute()
    assert cfg.root == cfg.studios_home / studio_slug(cfg.src_path)


def test_environment_overrides_defaults(tmp_path):
    """Verify environment variables override the packaged defaults."""
    env = {
        "STUDIO_TYPE": "stage1",
        "NO_SRC_PATH": "1",
        "STUDIOS_HOME": str(tmp_path / "home"),
        "SRC_PATH": str(tmp_path / "src"),
        "STUDIOKIT_STORE": str(tmp_path / "store"),
    }
    cfg = load_session_config(environ=env)
    assert cfg.studio_type is StudioType.BOOTSTRAP
    assert cfg.no_src_path is True
    assert cfg.store_root == tmp_path / "store"
    assert cfg.root == tmp_path / "home" / studio_slug(tmp_path / "src")


@pytest.mark.parametrize(
    "field, env_var, env_value, flag_value, expected",
    [
        ("studio_type", "STUDIO_TYPE", "slim", "minimal", StudioType.MINIMAL),
        ("studio_root", "STUDIO_ROOT", "/env/root", Path("/flag/root"), Path("/flag/root")),
        ("src_path", "SRC_PATH", "/env/src", Path("/flag/src"), Path("/flag/src")),
        ("studios_home", "STUDIOS_HOME", "/env/home", Path("/flag/home"), Path("/flag/home")),
        ("store_root", "STUDIOKIT_STORE", "/env/store", Path("/flag/store"), Path("/flag/store")),
        ("results_dir", "STUDIOKIT_RESULTS", "/env/res", Path("/flag/res"), Path("/flag/res")),
        ("no_src_path", "NO_SRC_PATH", "0", True, True),
    ],
)
def test_flags_beat_environment(field, env_var, env_value, flag_value, expected):
    """Verify an explicit flag wins over the environment for every field."""
    cfg = load_session_config(flags={field: flag_value}, environ={env_var: env_value})
    assert getattr(cfg, field) == expected


@pytest.mark.parametrize("value", ["", "0", "false", "no", "FALSE"])
def test_false_boolean_spellings(value):
    """Verify the recognised false spellings of boolean variables."""
    cfg = load_session_config(environ={"NO_SRC_PATH": value})
    assert cfg.no_src_path is False


def test_verbose_beats_quiet_within_a_layer():
    """Verify VERBOSE wins when both toggles are set in the environment."""
    cfg = load_session_config(environ={"QUIET": "1", "VERBOSE": "1"})
    assert cfg.verbosity is Verbosity.VERBOSE


def test_quiet_flag_beats_verbose_environment():
    """Verify a higher layer decides verbosity on its own."""
    cfg = load_session_config(flags={"quiet": True}, environ={"VERBOSE": "yes"})
    assert cfg.verbosity is Verbosity.QUIET
    assert cfg.quiet and not cfg.verbose


def test_invalid_studio_type_is_config_error():
    """Verify an unknown studio type is reported as ConfigError."""
    with pytest.raises(ConfigError):
        load_session_config(environ={"STUDIO_TYPE": "gigantic"})


def test_explicit_defaults_file(tmp_path):
    """Verify an alternative defaults YAML replaces the packaged one."""
    defaults = tmp_path / "defaults.yaml"
    defaults.write_text("studio_type: baseline\nresults_dir: /tmp/out\n")
    cfg = load_session_config(environ={}, defaults_path=defaults)
    assert cfg.studio_type is StudioType.BASELINE
    assert cfg.results_dir == Path("/tmp/out")


def test_studio_slug():
    """Verify studio root names are derived from the source path."""
    assert studio_slug(Path("/home/me/src/app")) == "home--me--src--app"
    assert studio_slug(Path("/")) == "root"
