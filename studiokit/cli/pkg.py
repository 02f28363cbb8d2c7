"""Package store commands: ``install`` and ``extract``."""

from __future__ import annotations

from pathlib import Path

import click

from studiokit.config import SessionConfig
from studiokit.models import PackageIdent
from studiokit.store import Artifact, PackageStore, extract_binaries

from .common import translate_errors


@click.command(name="install", help="Install built artifacts into the package store.")
@click.argument("artifacts", nargs=-1, required=True,
                type=click.Path(dir_okay=False, exists=True, path_type=Path))
@click.pass_obj
@translate_errors
def install(ctx_obj, artifacts: tuple[Path, ...]) -> None:
    config: SessionConfig = ctx_obj["config"]
    store = PackageStore(config.store_root)
    for path in artifacts:
        installed = store.install(Artifact.from_file(path))
        click.echo(f"{installed.ident} → {installed.path}")


@click.command(name="extract", help="Copy named binaries of an installed package into DEST.")
@click.argument("ident")
@click.argument("names", nargs=-1, required=True)
@click.option("--dest", required=True, type=click.Path(file_okay=False, path_type=Path),
              help="Directory to reset and fill with the binaries.")
@click.pass_obj
@translate_errors
def extract(ctx_obj, ident: str, names: tuple[str, ...], dest: Path) -> None:
    config: SessionConfig = ctx_obj["config"]
    try:
        wanted = PackageIdent.parse(ident)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="IDENT") from exc
    store = PackageStore(config.store_root)
    for path in extract_binaries(store, wanted, names, dest):
        click.echo(str(path))
