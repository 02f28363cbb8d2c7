"""
Hook lifecycle engine.

A build walks the fixed stage sequence ``prepare → build → (check) →
install``.  Each stage resolves its body (plan override or built-in default),
runs it inside the studio and records the outcome.  The first failure stops
the build; there is no recovery.  After ``install`` the install prefix is
packed into an artifact in the results directory.
"""

from __future__ import annotations

import shutil
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel

from studiokit.engines import ExitStatus
from studiokit.errors import CorruptArtifact, StageFailed, StudioKitError
from studiokit.io import CommandPatchApplier, HttpSourceFetcher, PatchApplier, SourceFetcher
from studiokit.models import PackageIdent
from studiokit.plan import HookBody, HookName, Plan, resolve_hook
from studiokit.resolver import DependencyGraph
from studiokit.store import Artifact, ArtifactManifest, InstalledPackage, PackageStore, pack_artifact
from studiokit.studio import BASE_PATH, Studio, StudioManager

from .defaults import DEFAULT_BODIES, StageContext

log = structlog.get_logger()


class StageState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageRecord(BaseModel):
    """Outcome of one stage."""

    stage: HookName
    state: StageState = StageState.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    status: Optional[ExitStatus] = None
    error: Optional[str] = None


class BuildResult(BaseModel, frozen=True):
    """Everything one successful build produced.

    Attributes:
        ident: Fully qualified identifier of the artifact.
        artifact: Packed artifact in the results directory.
        stages: Per-stage records in execution order.
        graph: Dependency graph the build ran against.
        installed: Store entry when the pipeline installed the artifact.
    """

    ident: PackageIdent
    artifact: Artifact
    stages: Tuple[StageRecord, ...]
    graph: DependencyGraph
    installed: Optional[InstalledPackage] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Called as factory(manager, studio, env=stage_env).
PatcherFactory = Callable[..., PatchApplier]


class LifecycleEngine:
    """Run a plan's hooks inside a studio.

    Args:
        manager: Manager that executes commands in studios.
        fetcher: Source fetcher; :class:`HttpSourceFetcher` by default.
        patcher_factory: Builds the patch collaborator for a studio.
        store: Package store providing dependency ``binary_path`` dirs.
        clock: Source of the build release timestamp.
    """

    STAGES = (HookName.PREPARE, HookName.BUILD, HookName.CHECK, HookName.INSTALL)

    def __init__(
        self,
        manager: StudioManager,
        *,
        fetcher: Optional[SourceFetcher] = None,
        patcher_factory: PatcherFactory = CommandPatchApplier,
        store: Optional[PackageStore] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.manager = manager
        self.fetcher = fetcher or HttpSourceFetcher()
        self.patcher_factory = patcher_factory
        self.store = store
        self.clock = clock

    # ------------------------------------------------------------------ #
    # Environment                                                        #
    # ------------------------------------------------------------------ #
    def stage_env(
        self,
        plan: Plan,
        studio: Studio,
        graph: DependencyGraph,
        ident: PackageIdent,
    ) -> Dict[str, str]:
        """Environment shared by every stage of *plan*."""
        dirs: List[str] = []
        if self.store is not None:
            for dep in graph.idents():
                for d in self.store.binary_dirs(dep):
                    if str(d) not in dirs:
                        dirs.append(str(d))
        return {
            "PATH": ":".join([*dirs, BASE_PATH]),
            "pkg_name": plan.name,
            "pkg_origin": plan.origin,
            "pkg_version": plan.version,
            "pkg_release": ident.release or "",
            "pkg_prefix": str(studio.prefix_for(ident)),
            "pkg_srvc_var": str(studio.srvc_var_for(plan.name)),
            "PLAN_CONTEXT": str(studio.plan_dir),
            "CACHE_PATH": str(studio.cache_dir),
            "STUDIO_TYPE": studio.studio_type.value,
        }

    # ------------------------------------------------------------------ #
    # Execution                                                          #
    # ------------------------------------------------------------------ #
    def _run_body(self, body: HookBody, ctx: StageContext) -> None:
        if body.builtin or body.calls_default:
            DEFAULT_BODIES[body.stage](ctx)
        ctx.apply_patches(body.patches)
        if body.script:
            ctx.run(body.script)

    def _stage_plan_context(self, plan: Plan, studio: Studio) -> None:
        if plan.context is not None and plan.context.is_dir():
            shutil.copytree(plan.context, studio.plan_dir, dirs_exist_ok=True)

    def run(
        self,
        plan: Plan,
        studio: Studio,
        *,
        graph: DependencyGraph,
        check: bool = False,
    ) -> BuildResult:
        """Build *plan* in *studio* and pack the result.

        The studio lock is held for the whole run, so a second owner gets
        :class:`~studiokit.errors.StudioBusy`.

        Raises:
            StageFailed: For the first failing stage.
        """
        ident = plan.ident.with_release(self.clock().strftime("%Y%m%d%H%M%S"))
        records = [StageRecord(stage=s) for s in self.STAGES]
        if not check:
            records[2].state = StageState.SKIPPED

        with studio.lock.held():
            studio.require_usable()
            self._stage_plan_context(plan, studio)
            studio.prefix_for(ident).mkdir(parents=True, exist_ok=True)
            studio.srvc_var_for(plan.name).mkdir(parents=True, exist_ok=True)
            env = self.stage_env(plan, studio, graph, ident)
            ctx = StageContext(
                plan=plan,
                studio=studio,
                manager=self.manager,
                fetcher=self.fetcher,
                patcher=self.patcher_factory(self.manager, studio, env=env),
                graph=graph,
                ident=ident,
                env=env,
            )

            log.info("lifecycle.start", plan=str(ident), studio=str(studio.root))
            for record in records:
                if record.state is StageState.SKIPPED:
                    continue
                self._run_stage(record, ctx)

            manifest = ArtifactManifest(
                ident=ident,
                runtime_deps=plan.runtime_deps,
                build_deps=plan.build_deps,
                binary_path=plan.binary_path,
                license=plan.license,
                maintainer=plan.maintainer,
                source=plan.source_url,
                source_checksum=plan.checksum,
                signing_key=plan.signing_key,
                studio_type=studio.studio_type.value,
            )
            try:
                artifact = pack_artifact(studio.prefix_for(ident), manifest, studio.config.results_dir)
            except CorruptArtifact as exc:
                # the prefix is what install produced
                failure = StageFailed(HookName.INSTALL.value, cause=exc)
                self._fail(records[-1], failure)
                raise failure from exc

        log.info("lifecycle.succeeded", plan=str(ident), artifact=str(artifact.path))
        return BuildResult(ident=ident, artifact=artifact, stages=tuple(records), graph=graph)

    def _run_stage(self, record: StageRecord, ctx: StageContext) -> None:
        stage = record.stage
        ctx.stage = stage
        record.state = StageState.RUNNING
        record.started_at = _now()
        body = resolve_hook(ctx.plan, stage)
        log.info("lifecycle.stage", stage=stage.value, override=not body.builtin)
        try:
            if ctx.studio.cancelled:
                raise StageFailed(stage.value, cancelled=True)
            self._run_body(body, ctx)
        except StageFailed as exc:
            self._fail(record, exc)
            raise
        except (StudioKitError, OSError, ValueError) as exc:
            failure = StageFailed(
                stage.value,
                getattr(exc, "status", None),
                cause=exc,
                cancelled=ctx.studio.cancelled,
            )
            self._fail(record, failure)
            raise failure from exc
        record.state = StageState.SUCCEEDED
        record.finished_at = _now()

    @staticmethod
    def _fail(record: StageRecord, exc: StageFailed) -> None:
        record.state = StageState.FAILED
        record.finished_at = _now()
        record.status = exc.status
        record.error = str(exc)
        log.error("lifecycle.failed", stage=record.stage.value, error=str(exc))
