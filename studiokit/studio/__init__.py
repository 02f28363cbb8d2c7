"""Studio sessions: isolated, exclusively owned build roots."""

from .manager import BASE_PATH, StudioManager
from .session import InteractiveHandle, Studio, StudioLock, StudioState

__all__ = [
    "BASE_PATH",
    "InteractiveHandle",
    "Studio",
    "StudioLock",
    "StudioManager",
    "StudioState",
]
