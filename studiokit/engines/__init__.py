"""Execution engines."""

from .base import ExecutionEngine, ExitStatus
from .docker import DockerEngine
from .local import LocalEngine

__all__ = ["ExecutionEngine", "ExitStatus", "DockerEngine", "LocalEngine"]
