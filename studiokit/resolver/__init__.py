"""Dependency resolution: override rules and graph construction."""

from .graph import DependencyGraph, DependencyNode, DepKind, resolve
from .overrides import apply_overrides, matching_rule

__all__ = [
    "DepKind",
    "DependencyGraph",
    "DependencyNode",
    "apply_overrides",
    "matching_rule",
    "resolve",
]
