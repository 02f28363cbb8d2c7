"""Hook lifecycle: default bodies and the stage state machine."""

from .defaults import DEFAULT_BODIES, StageContext
from .engine import BuildResult, LifecycleEngine, StageRecord, StageState

__all__ = [
    "DEFAULT_BODIES",
    "BuildResult",
    "LifecycleEngine",
    "StageContext",
    "StageRecord",
    "StageState",
]
