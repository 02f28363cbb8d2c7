"""Shared fixtures for the studiokit test-suite."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import pytest

from studiokit.config import SessionConfig
from studiokit.store import PackageStore

from .utils import make_artifact


@pytest.fixture
def config(tmp_path: Path) -> SessionConfig:
    """Session config confined to *tmp_path*, without a source mount."""
    return SessionConfig(
        no_src_path=True,
        src_path=tmp_path / "src",
        studio_root=tmp_path / "studios" / "default",
        studios_home=tmp_path / "studios",
        store_root=tmp_path / "store",
        results_dir=tmp_path / "results",
    )


@pytest.fixture
def store(config: SessionConfig) -> PackageStore:
    return PackageStore(config.store_root)


@pytest.fixture
def artifact_factory(tmp_path: Path):
    def factory(ident: str, files: Optional[Dict[str, str]] = None, **kwargs):
        return make_artifact(tmp_path, ident, files or {"bin/tool": "#!/bin/sh\n"}, **kwargs)

    return factory
