"""Artifacts and the package store."""

from .artifact import Artifact, ArtifactManifest, pack_artifact, read_manifest
from .extract import extract_binaries
from .store import InstalledPackage, PackageStore

__all__ = [
    "Artifact",
    "ArtifactManifest",
    "InstalledPackage",
    "PackageStore",
    "extract_binaries",
    "pack_artifact",
    "read_manifest",
]
