"""
Discovery of plans on disk.

A plan root is a directory whose children each hold one plan file
(``<root>/<name>/plan.yaml`` or ``plan.sh``).  :class:`PlanIndex` loads every
plan it finds and answers "which plan provides ``origin/name``" for the
dependency resolver.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional

from studiokit.errors import MalformedPlan
from studiokit.models import PackageIdent

from .loader import PLAN_FILENAMES, load
from .schema import Plan

log = logging.getLogger(__name__)


class PlanIndex:
    """In-memory index of plans keyed by ``origin/name``."""

    def __init__(self, plans: Iterable[Plan] = ()) -> None:
        self._plans: Dict[str, Plan] = {}
        for plan in plans:
            self.add(plan)

    @classmethod
    def from_roots(cls, roots: Iterable[Path]) -> "PlanIndex":
        """Load every plan found one level below each directory in *roots*.

        Roots listed later shadow earlier ones for the same ``origin/name``.
        """
        index = cls()
        for root in roots:
            root = Path(root).expanduser()
            if not root.is_dir():
                log.warning("Plan root %s does not exist", root)
                continue
            for child in sorted(p for p in root.iterdir() if p.is_dir()):
                if not any((child / f).is_file() for f in PLAN_FILENAMES):
                    continue
                index.add(load(child))
        return index

    def add(self, plan: Plan) -> None:
        """Register *plan*, replacing any plan with the same ``origin/name``."""
        key = plan.ident.key
        if key in self._plans:
            log.debug("Plan %s shadows an earlier definition", key)
        self._plans[key] = plan

    def get(self, ident: PackageIdent) -> Optional[Plan]:
        """Return the plan that satisfies *ident* or ``None``."""
        plan = self._plans.get(ident.key)
        if plan is None:
            return None
        if ident.version is not None and ident.version != plan.version:
            return None
        return plan

    def require(self, text: str) -> Plan:
        """Return the plan named by *text* (``origin/name``) or raise."""
        plan = self.get(PackageIdent.parse(text))
        if plan is None:
            raise MalformedPlan(f"No plan named {text} in the plan index")
        return plan

    def __contains__(self, ident: PackageIdent) -> bool:
        return self.get(ident) is not None

    def __iter__(self) -> Iterator[Plan]:
        return iter(self._plans.values())

    def __len__(self) -> int:
        return len(self._plans)
