"""
Built-in hook bodies and the context they run in.

Each default receives a :class:`StageContext` and either returns normally or
raises.  A failing command is reported as :class:`StageFailed` carrying its
:class:`~studiokit.engines.ExitStatus`; collaborator errors (fetch, checksum,
patch) propagate as-is and are wrapped by the lifecycle engine.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Union

import structlog

from studiokit.engines import ExitStatus
from studiokit.errors import NoBuildStep, StageFailed
from studiokit.io import PatchApplier, SourceFetcher, looks_like_archive, unpack
from studiokit.models import PackageIdent
from studiokit.plan import HookName, Plan
from studiokit.resolver import DependencyGraph
from studiokit.studio import Studio, StudioManager
from studiokit.utils.cleanup import reset_dir

log = structlog.get_logger()


@dataclass
class StageContext:
    """Everything a hook body needs while one plan is built.

    Attributes:
        plan: Effective plan (overrides applied).
        studio: Studio the build runs in.
        manager: Manager used to run commands in *studio*.
        fetcher: Source download collaborator.
        patcher: Patch collaborator bound to *studio*.
        graph: Resolved dependencies.
        ident: Fully qualified identifier being produced.
        env: Stage environment passed to every command.
        source_dir: Studio path of the source tree; commands run here.
        stage: Stage currently running.
    """

    plan: Plan
    studio: Studio
    manager: StudioManager
    fetcher: SourceFetcher
    patcher: PatchApplier
    graph: DependencyGraph
    ident: PackageIdent
    env: Dict[str, str] = field(default_factory=dict)
    source_dir: Optional[Path] = None
    stage: HookName = HookName.PREPARE

    @property
    def prefix(self) -> Path:
        return self.studio.prefix_for(self.ident)

    @property
    def work_dir(self) -> Path:
        if self.source_dir is not None:
            return self.source_dir
        return self.studio.src_dir if self.studio.src_mounted else self.studio.build_dir

    def plan_file(self, rel: str) -> Path:
        """Studio path of a file shipped in the plan directory."""
        return self.studio.plan_dir / rel

    def host_file(self, name: str) -> Path:
        """Host-side path of *name* inside the working directory."""
        return self.studio.host_path(self.work_dir) / name

    def run(self, command: Union[str, Sequence[str]]) -> ExitStatus:
        """Run *command* in the working directory; raise on failure."""
        status = self.manager.run(self.studio, command, env=self.env, cwd=self.work_dir)
        self.check(status)
        return status

    def check(self, status: ExitStatus) -> None:
        if self.studio.cancelled:
            raise StageFailed(self.stage.value, status, cancelled=True)
        if not status.ok:
            raise StageFailed(self.stage.value, status)

    def apply_patches(self, patches: Sequence[str]) -> None:
        """Apply plan-relative *patches* in order; the first rejection propagates."""
        for rel in patches:
            self.patcher.apply(self.plan_file(rel), self.work_dir)


# --------------------------------------------------------------------------- #
# Default bodies                                                              #
# --------------------------------------------------------------------------- #
def default_prepare(ctx: StageContext) -> None:
    """Fetch and unpack ``pkg_source`` (or use the mount), then apply ``pkg_patches``."""
    plan = ctx.plan
    url = plan.source_url
    if url:
        archive = ctx.fetcher.fetch(url, plan.checksum or "", ctx.studio.cache_dir)
        reset_dir(ctx.studio.build_dir)
        if looks_like_archive(archive):
            ctx.source_dir = unpack(archive, ctx.studio.build_dir)
            log.info("prepare.unpacked", archive=archive.name, tree=str(ctx.source_dir))
        else:
            # single-file sources are used as-is
            shutil.copy2(archive, ctx.studio.build_dir / archive.name)
            ctx.source_dir = ctx.studio.build_dir
    elif ctx.studio.src_mounted:
        ctx.source_dir = ctx.studio.src_dir
        log.info("prepare.using_mount", tree=str(ctx.source_dir))
    else:
        ctx.source_dir = ctx.studio.build_dir
    ctx.apply_patches(plan.patches)


def default_build(ctx: StageContext) -> None:
    """``./configure --prefix=$pkg_prefix && make`` or ``make``."""
    if ctx.host_file("configure").is_file():
        ctx.run('./configure --prefix="$pkg_prefix"\nmake')
    elif ctx.host_file("Makefile").is_file():
        ctx.run("make")
    else:
        raise NoBuildStep(f"{ctx.plan.ident}: no configure script or Makefile in {ctx.work_dir}")


def default_check(ctx: StageContext) -> None:
    """``make check`` when there is a Makefile."""
    if ctx.host_file("Makefile").is_file():
        ctx.run("make check")
    else:
        log.info("check.skipped", reason="no Makefile")


def default_install(ctx: StageContext) -> None:
    """``make install`` when there is a Makefile, else warn."""
    if ctx.host_file("Makefile").is_file():
        ctx.run("make install")
    else:
        log.warning("install.no_makefile", plan=str(ctx.plan.ident), tree=str(ctx.work_dir))


DEFAULT_BODIES: Dict[HookName, Callable[[StageContext], None]] = {
    HookName.PREPARE: default_prepare,
    HookName.BUILD: default_build,
    HookName.CHECK: default_check,
    HookName.INSTALL: default_install,
}
