"""``studio build`` – build a plan in a fresh studio and install the artifact."""

from __future__ import annotations

from pathlib import Path

import click

from studiokit.config import SessionConfig
from studiokit.pipelines import build
from studiokit.plan import PlanIndex, find_plan_file, load

from .common import services, translate_errors


@click.command(
    name="build",
    help="Build PLAN (a plan directory or plan file) inside a fresh studio.",
)
@click.argument("plan", type=click.Path(exists=True, path_type=Path))
@click.option("--plans", "plan_roots", multiple=True,
              type=click.Path(file_okay=False, exists=True, path_type=Path),
              help="Directory of plans used to resolve dependencies (repeatable). "
                   "Defaults to the directory containing PLAN.")
@click.option("--check", is_flag=True, help="Run the check stage.")
@click.option("--no-install", is_flag=True, help="Do not install the artifact into the package store.")
@click.option("--keep", is_flag=True, help="Keep the studio after the build.")
@click.pass_obj
@translate_errors
def cli(
    ctx_obj,
    plan: Path,
    plan_roots: tuple[Path, ...],
    check: bool,
    no_install: bool,
    keep: bool,
) -> None:
    """Entry-point for ``studio build``.

    Args:
        ctx_obj: Click context with the session config already built.
        plan: Plan directory or plan file.
        plan_roots: Extra plan roots for dependency lookups.
        check: Run ``do_check``.
        no_install: Skip the store install.
        keep: Keep the studio.
    """
    config: SessionConfig = ctx_obj["config"]
    plan_dir = find_plan_file(plan).parent.resolve()
    index = PlanIndex.from_roots(plan_roots or (plan_dir.parent,))
    manager, store, lifecycle = services(ctx_obj)

    result = build(
        load(plan),
        config,
        store=store,
        manager=manager,
        lifecycle=lifecycle,
        index=index,
        check=check,
        install=not no_install,
        keep_studio=keep,
    )
    click.echo(str(result.artifact.path))
