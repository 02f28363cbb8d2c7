"""
Dependency graph construction for a single plan.

Resolution happens in two passes over the same edge model:

1. **Cycle check** – depth-first traversal with visiting/visited colouring.
   The walk follows the root's build *and* runtime deps, every dependency's
   runtime deps, and the build deps of dependencies that are not yet in the
   package store (they would have to be built first).  Any back-edge to a
   node on the current path raises :class:`CyclicDependency`.
2. **Graph** – the root's direct deps plus the transitive closure of runtime
   deps.  Build-only deps of dependencies stay private to their own builds
   and never enter the graph.  The result is ordered leaves-first with ties
   broken by identifier so that repeated resolutions are identical.
"""

from __future__ import annotations

import heapq
from collections import defaultdict
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import structlog
from pydantic import BaseModel

from studiokit.config import SessionConfig
from studiokit.errors import CyclicDependency, UnknownDependency
from studiokit.models import PackageIdent, StudioType
from studiokit.plan.schema import Plan

from .overrides import apply_overrides

log = structlog.get_logger()


class PlanSource(Protocol):
    def get(self, ident: PackageIdent) -> Optional[Plan]: ...


class InstalledSource(Protocol):
    def is_satisfied(self, ident: PackageIdent) -> bool: ...

    def runtime_deps_of(self, ident: PackageIdent) -> Optional[List[PackageIdent]]: ...


class DepKind(str, Enum):
    """Why a node is in the graph."""

    RUNTIME = "runtime"
    BUILD = "build"


class DependencyNode(BaseModel, frozen=True):
    """One resolved dependency.

    Attributes:
        ident: Identifier as first declared.
        kind: ``runtime`` when reachable from the root's runtime deps through
            runtime edges, else ``build``.
        satisfied: Already installed in the package store.
        direct: Declared by the root plan itself.
        required_by: Key of the node that first pulled this one in.
    """

    ident: PackageIdent
    kind: DepKind
    satisfied: bool
    direct: bool
    required_by: str


class DependencyGraph(BaseModel, frozen=True):
    """Resolved dependencies of one plan in leaves-first order."""

    root: PackageIdent
    studio_type: StudioType
    nodes: Tuple[DependencyNode, ...]
    edges: Dict[str, Tuple[str, ...]]

    def keys(self) -> List[str]:
        return [n.ident.key for n in self.nodes]

    def idents(self) -> List[PackageIdent]:
        return [n.ident for n in self.nodes]

    def of_kind(self, kind: DepKind) -> List[PackageIdent]:
        return [n.ident for n in self.nodes if n.kind is kind]

    def unsatisfied(self) -> List[PackageIdent]:
        return [n.ident for n in self.nodes if not n.satisfied]

    def node(self, key: str) -> Optional[DependencyNode]:
        for n in self.nodes:
            if n.ident.key == key:
                return n
        return None


class _Resolver:
    """Holds the lookups shared by both passes."""

    _WHITE, _GRAY, _BLACK = 0, 1, 2

    def __init__(
        self,
        plan: Plan,
        index: Optional[PlanSource],
        store: Optional[InstalledSource],
    ) -> None:
        self.plan = plan
        self.index = index
        self.store = store

    # ------------------------------------------------------------------ #
    def satisfied(self, ident: PackageIdent) -> bool:
        return self.store is not None and self.store.is_satisfied(ident)

    def runtime_of(self, ident: PackageIdent) -> Optional[List[PackageIdent]]:
        """Runtime deps from the store manifest, else from the plan index."""
        if self.store is not None:
            deps = self.store.runtime_deps_of(ident)
            if deps is not None:
                return list(deps)
        dep_plan = self.index.get(ident) if self.index is not None else None
        return list(dep_plan.runtime_deps) if dep_plan is not None else None

    def build_of(self, ident: PackageIdent) -> List[PackageIdent]:
        if self.satisfied(ident) or self.index is None:
            return []
        dep_plan = self.index.get(ident)
        return list(dep_plan.build_deps) if dep_plan is not None else []

    # ------------------------------------------------------------------ #
    def check_cycles(self) -> None:
        color: Dict[str, int] = {}
        path: List[str] = []

        def requires(ident: PackageIdent, is_root: bool) -> Iterable[PackageIdent]:
            if is_root:
                return [*self.plan.build_deps, *self.plan.runtime_deps]
            return [*(self.runtime_of(ident) or []), *self.build_of(ident)]

        def visit(ident: PackageIdent, is_root: bool) -> None:
            key = ident.key
            state = color.get(key, self._WHITE)
            if state == self._GRAY:
                raise CyclicDependency(path[path.index(key):] + [key])
            if state == self._BLACK:
                return
            color[key] = self._GRAY
            path.append(key)
            for dep in requires(ident, is_root):
                visit(dep, False)
            path.pop()
            color[key] = self._BLACK

        visit(self.plan.ident, True)

    def build_graph(self, studio_type: StudioType) -> DependencyGraph:
        root_key = self.plan.ident.key
        first: Dict[str, PackageIdent] = {}
        required_by: Dict[str, str] = {}
        edges: Dict[str, Tuple[str, ...]] = {}
        direct = {d.key for d in (*self.plan.runtime_deps, *self.plan.build_deps)}

        def closure(starts: Iterable[PackageIdent]) -> set[str]:
            reached: set[str] = set()
            stack = [(d, root_key) for d in reversed(list(starts))]
            while stack:
                ident, parent = stack.pop()
                key = ident.key
                if key in reached:
                    continue
                reached.add(key)
                first.setdefault(key, ident)
                required_by.setdefault(key, parent)
                if key not in edges:
                    deps = self.runtime_of(ident)
                    if deps is None:
                        raise UnknownDependency(str(ident), parent)
                    edges[key] = tuple(d.key for d in deps)
                    for dep in deps:
                        first.setdefault(dep.key, dep)
                stack.extend((d, key) for d in reversed([first[k] for k in edges[key]]))
            return reached

        runtime_keys = closure(self.plan.runtime_deps)
        all_keys = runtime_keys | closure(self.plan.build_deps)

        # Kahn's algorithm, leaves first, ties broken by identifier.
        remaining = {k: set(edges[k]) for k in all_keys}
        dependents: Dict[str, set[str]] = defaultdict(set)
        for k, deps in remaining.items():
            for d in deps:
                dependents[d].add(k)
        ready = [k for k, deps in remaining.items() if not deps]
        heapq.heapify(ready)
        order: List[str] = []
        while ready:
            key = heapq.heappop(ready)
            order.append(key)
            for parent in dependents[key]:
                remaining[parent].discard(key)
                if not remaining[parent]:
                    heapq.heappush(ready, parent)
        if len(order) != len(all_keys):
            raise CyclicDependency(sorted(set(all_keys) - set(order)))

        nodes = tuple(
            DependencyNode(
                ident=first[k],
                kind=DepKind.RUNTIME if k in runtime_keys else DepKind.BUILD,
                satisfied=self.satisfied(first[k]),
                direct=k in direct,
                required_by=required_by[k],
            )
            for k in order
        )
        return DependencyGraph(
            root=self.plan.ident,
            studio_type=studio_type,
            nodes=nodes,
            edges={k: edges[k] for k in order},
        )


def resolve(
    plan: Plan,
    session_config: SessionConfig,
    *,
    index: Optional[PlanSource] = None,
    store: Optional[InstalledSource] = None,
) -> DependencyGraph:
    """Resolve the dependency graph of *plan* under *session_config*.

    Args:
        plan: Base plan; the matching override rule is applied here.
        session_config: Session configuration the override predicates test.
        index: Plan lookup used for dependencies that are not installed.
        store: Package store consulted for installed dependencies.

    Raises:
        CyclicDependency: On any dependency cycle.
        UnknownDependency: When a graph node is neither installed nor a
            known plan.
    """
    effective = apply_overrides(plan, session_config)
    resolver = _Resolver(effective, index, store)
    resolver.check_cycles()
    graph = resolver.build_graph(session_config.studio_type)
    log.debug(
        "resolver.resolved",
        plan=str(plan.ident),
        studio_type=session_config.studio_type.value,
        order=graph.keys(),
    )
    return graph
