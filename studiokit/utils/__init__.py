"""Shared helpers."""

from .cleanup import remove_tree, reset_dir, scoped_dir

__all__ = ["remove_tree", "reset_dir", "scoped_dir"]
