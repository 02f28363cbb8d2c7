"""Studio session commands: ``new``, ``enter``, ``run`` and ``rm``."""

from __future__ import annotations

import click
import structlog

from studiokit.config import SessionConfig
from studiokit.studio import Studio, StudioManager

from .common import services, translate_errors

log = structlog.get_logger()


def _open_or_create(manager: StudioManager, config: SessionConfig) -> Studio:
    studio = manager.open(config.root, config)
    if studio is None:
        studio = manager.create(config.studio_type, config.root, config)
    return studio


@click.command(name="new", help="Create a fresh studio (an existing one is reset).")
@click.pass_obj
@translate_errors
def new(ctx_obj) -> None:
    config: SessionConfig = ctx_obj["config"]
    manager, _, _ = services(ctx_obj)
    studio = manager.create(config.studio_type, config.root, config)
    click.echo(str(studio.root))


@click.command(name="enter", help="Open an interactive shell inside the studio.")
@click.pass_obj
@translate_errors
def enter(ctx_obj) -> None:
    config: SessionConfig = ctx_obj["config"]
    manager, _, _ = services(ctx_obj)
    handle = manager.enter(_open_or_create(manager, config))
    status = handle.shell()
    if not status.ok:
        raise click.exceptions.Exit(status.returncode if status.returncode > 0 else 1)


@click.command(
    name="run",
    help="Run a command inside the studio. A single argument is run with bash -c.",
    context_settings=dict(ignore_unknown_options=True),
)
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_obj
@translate_errors
def run(ctx_obj, command: tuple[str, ...]) -> None:
    config: SessionConfig = ctx_obj["config"]
    manager, _, _ = services(ctx_obj)
    studio = _open_or_create(manager, config)
    status = manager.run(studio, command[0] if len(command) == 1 else list(command))
    if status.output:
        click.echo(status.output, nl=False)
    if not status.ok:
        raise click.ClickException(f"Command failed ({status.describe()})")


@click.command(name="rm", help="Destroy the studio.")
@click.pass_obj
@translate_errors
def rm(ctx_obj) -> None:
    config: SessionConfig = ctx_obj["config"]
    manager, _, _ = services(ctx_obj)
    manager.destroy(config.root)
    log.info("cli.rm", root=str(config.root))
