"""Expose the project-wide Click group for the ``studio`` script.

The module:

* declares a single Click *group* called :pyfunc:`main`;
* wires the global studio flags (``-n -q -v -r -s -t``) into one
  :class:`~studiokit.config.SessionConfig` (flags > environment > defaults);
* sets up logging via :pyfunc:`studiokit.utils.logging.setup_logging`;
* registers every sub-command located in sibling modules lazily.
"""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import Any, Dict

import click

from studiokit import __version__
from studiokit.config import ConfigError, load_session_config
from studiokit.utils.logging import setup_logging


class LazyGroup(click.Group):
    """Click group that imports sub-commands lazily."""

    def __init__(self, *args, **kwargs):
        self._lazy: dict[str, str] = {}
        super().__init__(*args, **kwargs)

    def set_lazy_command(self, name: str, target: str) -> None:
        """Register *name* to be imported from ``target`` on first use."""
        self._lazy[name] = target

    def list_commands(self, ctx):
        return sorted({*super().list_commands(ctx), *self._lazy})

    def get_command(self, ctx, cmd_name):  # noqa: D401 - Click signature
        cmd = super().get_command(ctx, cmd_name)
        if cmd is not None:
            return cmd
        target = self._lazy.get(cmd_name)
        if not target:
            return None
        module_name, attr = target.split(":", 1)
        module = importlib.import_module(module_name)
        cmd = getattr(module, attr)
        self.add_command(cmd, name=cmd_name)
        return cmd


_CTX: Dict[str, Any] = dict(
    help_option_names=["-h", "--help"],
    max_content_width=120,
)


@click.group(
    cls=LazyGroup,
    context_settings=_CTX,
    help="""\b
studio – build packages from plans inside isolated studios.

""",
)
@click.version_option(__version__, "-V", "--version")
@click.option("-n", "--no-src-path", is_flag=True,
              help="Do not mount the source path into the studio.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option("-v", "--verbose", is_flag=True, help="Trace commands and show debug output.")
@click.option("-r", "--studio-root", type=click.Path(file_okay=False, path_type=Path),
              help="Studio root (default: derived from the source path).")
@click.option("-s", "--src-path", type=click.Path(file_okay=False, path_type=Path),
              help="Source path mounted at <root>/src (default: current directory).")
@click.option("-t", "--studio-type", metavar="TYPE",
              help="baseline | full | slim | minimal | bootstrap (aliases: default, stage1).")
@click.option("--engine", type=click.Choice(["local", "docker"]), default="local", show_default=True,
              help="Execution back-end for studio processes.")
@click.option("--image", default=None, help="Container image for the docker engine.")
@click.pass_context
def main(  # noqa: D401 – Click requires the callback to be named “main”.
    ctx: click.Context,
    no_src_path: bool,
    quiet: bool,
    verbose: bool,
    studio_root: Path | None,
    src_path: Path | None,
    studio_type: str | None,
    engine: str,
    image: str | None,
) -> None:
    """Root command executed by *studio*.

    Raises:
        click.ClickException: When the merged configuration is invalid.
    """
    try:
        config = load_session_config(
            flags={
                "no_src_path": no_src_path,
                "quiet": quiet,
                "verbose": verbose,
                "studio_root": studio_root,
                "src_path": src_path,
                "studio_type": studio_type,
            }
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    # Logging must be configured before any output is produced
    setup_logging(config.verbosity, studios_home=config.studios_home)

    ctx.obj = {"config": config, "engine": engine, "image": image}


@main.command(name="version", help="Print the studiokit version.")
def version_cmd() -> None:
    click.echo(__version__)


@main.command(name="help", help="Show help for the tool or one sub-command.")
@click.argument("command", required=False)
@click.pass_context
def help_cmd(ctx: click.Context, command: str | None) -> None:
    group_ctx = ctx.parent
    if command is None:
        click.echo(main.get_help(group_ctx))
        return
    cmd = main.get_command(group_ctx, command)
    if cmd is None:
        raise click.UsageError(f"No such command {command!r}")
    with click.Context(cmd, info_name=command, parent=group_ctx) as sub_ctx:
        click.echo(cmd.get_help(sub_ctx))


main.set_lazy_command("new", "studiokit.cli.studio:new")
main.set_lazy_command("enter", "studiokit.cli.studio:enter")
main.set_lazy_command("run", "studiokit.cli.studio:run")
main.set_lazy_command("rm", "studiokit.cli.studio:rm")
main.set_lazy_command("build", "studiokit.cli.build:cli")
main.set_lazy_command("install", "studiokit.cli.pkg:install")
main.set_lazy_command("extract", "studiokit.cli.pkg:extract")

cli = main
__all__: list[str] = ["main"]
