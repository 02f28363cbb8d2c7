"""
End-to-end build orchestration.

:func:`build` is the one call that turns a plan into an installed package:

1. preflight: buildability check and dependency resolution (no studio yet);
2. provision a studio;
3. run the hook lifecycle;
4. install the artifact into the package store;
5. destroy the studio on every exit path (unless asked to keep it).

:func:`build_all` runs :func:`build` for independent plans in parallel, one
studio per plan.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from studiokit.config import SessionConfig
from studiokit.errors import StudioKitError, UnsatisfiedDependency
from studiokit.lifecycle import BuildResult, LifecycleEngine
from studiokit.plan import Plan, PlanIndex, ensure_buildable
from studiokit.resolver import apply_overrides, resolve
from studiokit.store import PackageStore
from studiokit.studio import StudioManager

log = logging.getLogger(__name__)


def build(
    plan: Plan,
    config: SessionConfig,
    *,
    store: PackageStore,
    manager: StudioManager,
    lifecycle: LifecycleEngine,
    index: Optional[PlanIndex] = None,
    check: bool = False,
    install: bool = True,
    keep_studio: bool = False,
    root: Optional[Path] = None,
) -> BuildResult:
    """Build *plan* and (optionally) install the result.

    Args:
        plan: Base plan; overrides matching *config* are applied here.
        config: Session configuration.
        store: Package store for dependency lookups and the install.
        manager: Studio manager.
        lifecycle: Lifecycle engine that runs the hooks.
        index: Plans available for dependency resolution.
        check: Run the ``check`` stage.
        install: Install the artifact into *store*.
        keep_studio: Leave the studio in place afterwards.
        root: Studio root; ``config.root`` by default.

    Raises:
        PlanError: When the plan cannot be built (before provisioning).
        DependencyError: On resolution problems or missing dependencies.
        StageFailed: When a lifecycle stage fails.
    """
    src_mounted = not config.no_src_path and config.src_path.is_dir()
    ensure_buildable(plan, src_mounted=src_mounted)
    graph = resolve(plan, config, index=index, store=store)
    missing = graph.unsatisfied()
    if missing:
        raise UnsatisfiedDependency([str(i) for i in missing])
    effective = apply_overrides(plan, config)

    studio = manager.create(config.studio_type, root or config.root, config)
    try:
        result = lifecycle.run(effective, studio, graph=graph, check=check)
        if install:
            installed = store.install(result.artifact)
            result = result.model_copy(update={"installed": installed})
        log.info("Built %s → %s", result.ident, result.artifact.path)
        return result
    finally:
        if keep_studio:
            log.info("Keeping studio %s", studio.root)
        else:
            manager.destroy(studio)


def studio_root_for(plan: Plan, config: SessionConfig) -> Path:
    """Per-plan studio root used by :func:`build_all`."""
    return config.studios_home / f"{plan.origin}--{plan.name}"


def build_all(
    plans: Iterable[Plan],
    config: SessionConfig,
    *,
    store: PackageStore,
    manager: StudioManager,
    lifecycle: LifecycleEngine,
    index: Optional[PlanIndex] = None,
    max_workers: int = 4,
    **options,
) -> Dict[str, Union[BuildResult, StudioKitError]]:
    """Build independent *plans* concurrently, each in its own studio.

    A failing plan does not stop the others.

    Returns:
        Mapping of plan identifier to its :class:`BuildResult` or the
        :class:`StudioKitError` it failed with.
    """
    plans = list(plans)

    def one(plan: Plan) -> Union[BuildResult, StudioKitError]:
        try:
            return build(
                plan,
                config,
                store=store,
                manager=manager,
                lifecycle=lifecycle,
                index=index,
                root=studio_root_for(plan, config),
                **options,
            )
        except StudioKitError as exc:
            log.error("Build of %s failed: %s", plan.ident, exc)
            return exc

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        outcomes = list(pool.map(one, plans))
    return {str(plan.ident): outcome for plan, outcome in zip(plans, outcomes)}
