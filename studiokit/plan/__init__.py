"""Plan model: schema, loaders and on-disk discovery."""

from .index import PlanIndex
from .loader import ensure_buildable, find_plan_file, load, resolve_hook
from .schema import DEFAULT_HOOKS, HookBody, HookName, OverrideRule, Plan
from .shell import parse_plan_sh

__all__ = [
    "DEFAULT_HOOKS",
    "HookBody",
    "HookName",
    "OverrideRule",
    "Plan",
    "PlanIndex",
    "ensure_buildable",
    "find_plan_file",
    "load",
    "parse_plan_sh",
    "resolve_hook",
]
