"""High-level pipelines."""

from .build import build, build_all, studio_root_for

__all__ = ["build", "build_all", "studio_root_for"]
