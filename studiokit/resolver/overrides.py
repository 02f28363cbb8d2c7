"""
Environment-conditional plan overrides.

Rules are pure predicate → replacement pairs evaluated against the
:class:`~studiokit.config.SessionConfig`.  The *last* matching rule wins and
only that one is applied, so bootstrap behaviour never compounds.
"""

from __future__ import annotations

from typing import Optional

import structlog

from studiokit.config import SessionConfig
from studiokit.errors import MalformedPlan
from studiokit.models import PackageIdent
from studiokit.plan.schema import OVERRIDABLE_FIELDS, OverrideRule, Plan

log = structlog.get_logger()


def matching_rule(plan: Plan, config: SessionConfig) -> Optional[OverrideRule]:
    """Return the last rule of *plan* whose predicate holds for *config*."""
    values = config.as_predicate_values()
    chosen: Optional[OverrideRule] = None
    for rule in plan.overrides:
        if rule.matches(values):
            chosen = rule
    return chosen


def apply_overrides(plan: Plan, config: SessionConfig) -> Plan:
    """Return *plan* with the matching override applied (or *plan* itself).

    Replacement values are re-validated through :class:`Plan`, so an override
    cannot smuggle in duplicates or self-references.
    """
    rule = matching_rule(plan, config)
    if rule is None:
        return plan

    data = {name: getattr(plan, name) for name in Plan.model_fields}
    try:
        for alias, values in rule.replace.items():
            field = OVERRIDABLE_FIELDS[alias]
            if field in {"runtime_deps", "build_deps"}:
                data[field] = [PackageIdent.parse(v, default_origin=plan.origin) for v in values]
            else:
                data[field] = list(values)
        overridden = Plan.model_validate(data)
    except ValueError as exc:  # includes pydantic.ValidationError
        raise MalformedPlan(f"{plan.ident}: invalid override – {exc}") from exc
    log.info(
        "resolver.override_applied",
        plan=str(plan.ident),
        when=rule.when,
        fields=sorted(rule.replace),
    )
    return overridden
