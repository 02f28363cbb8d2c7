"""Helpers shared by the CLI sub-commands."""

from __future__ import annotations

import functools
from typing import Any, Callable, Dict

import click

from studiokit.config import SessionConfig
from studiokit.engines import DockerEngine, ExecutionEngine, LocalEngine
from studiokit.errors import StudioKitError
from studiokit.lifecycle import LifecycleEngine
from studiokit.store import PackageStore
from studiokit.studio import StudioManager


def translate_errors(func: Callable) -> Callable:
    """Turn :class:`StudioKitError` into :class:`click.ClickException`."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except StudioKitError as exc:
            raise click.ClickException(str(exc)) from exc

    return wrapper


def make_engine(ctx_obj: Dict[str, Any]) -> ExecutionEngine:
    config: SessionConfig = ctx_obj["config"]
    if ctx_obj.get("engine") == "docker":
        kwargs: Dict[str, Any] = {"extra_volumes": {str(config.store_root): str(config.store_root)}}
        if ctx_obj.get("image"):
            kwargs["image"] = ctx_obj["image"]
        return DockerEngine(**kwargs)
    return LocalEngine()


def services(ctx_obj: Dict[str, Any]) -> tuple[StudioManager, PackageStore, LifecycleEngine]:
    """Build the manager, store and lifecycle engine for one invocation."""
    config: SessionConfig = ctx_obj["config"]
    manager = StudioManager(make_engine(ctx_obj))
    store = PackageStore(config.store_root)
    lifecycle = LifecycleEngine(manager, store=store)
    return manager, store, lifecycle
