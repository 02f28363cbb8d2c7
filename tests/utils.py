"""Test helpers for studiokit modules."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Dict, Iterable, Optional

import yaml

from studiokit.models import PackageIdent
from studiokit.store import Artifact, ArtifactManifest, pack_artifact


def write_plan(root: Path, name: str, doc: dict, files: Optional[Dict[str, str]] = None) -> Path:
    """Write ``<root>/<name>/plan.yaml`` (plus extra *files*) and return the dir."""
    plan_dir = root / name
    plan_dir.mkdir(parents=True, exist_ok=True)
    (plan_dir / "plan.yaml").write_text(yaml.safe_dump(doc))
    for rel, content in (files or {}).items():
        (plan_dir / rel).write_text(content)
    return plan_dir


def make_artifact(
    tmp_path: Path,
    ident: str,
    files: Dict[str, str],
    *,
    runtime_deps: Iterable[str] = (),
    binary_path: Iterable[str] = ("bin",),
    out: str = "artifacts",
) -> Artifact:
    """Pack *files* (relative path → content) as an artifact for *ident*.

    Args:
        tmp_path: Scratch directory holding the prefix and the output.
        ident: Fully qualified identifier of the artifact.
        files: Prefix content.
        runtime_deps: Identifiers recorded in the manifest.
        binary_path: Manifest ``binary_path`` entries.
        out: Output directory name below *tmp_path*.

    Returns:
        The packed :class:`Artifact`.
    """
    parsed = PackageIdent.parse(ident)
    prefix = tmp_path / "prefixes" / str(parsed).replace("/", "_")
    if prefix.exists():
        shutil.rmtree(prefix)
    for rel, content in files.items():
        target = prefix / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    prefix.mkdir(parents=True, exist_ok=True)
    manifest = ArtifactManifest(
        ident=parsed,
        runtime_deps=tuple(PackageIdent.parse(d) for d in runtime_deps),
        binary_path=tuple(binary_path),
        studio_type="full",
    )
    return pack_artifact(prefix, manifest, tmp_path / out)
