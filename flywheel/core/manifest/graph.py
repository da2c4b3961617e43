"""
Dependency graph — module ids as nodes, "depends on" as edges.

Checks performed before a graph is handed out:

    1. every dependency references an existing module
    2. no edge points to a strictly later phase
    3. no cycles (the exact cycle path is reported)

The canonical global order is the concatenation, phase ascending, of a
topological order per phase. Ties are broken by manifest position so
the same manifest always yields the same order.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Sequence

from flywheel.core.errors import ManifestValidationError, ValidationIssue
from flywheel.core.models.module import Module

logger = logging.getLogger(__name__)


# ── Checks ──────────────────────────────────────────────────────


def find_missing_dependencies(modules: Sequence[Module]) -> list[ValidationIssue]:
    """Dependencies that reference ids not present in the manifest."""
    known = {m.id for m in modules}
    issues: list[ValidationIssue] = []
    for module in modules:
        for dep in module.dependencies:
            if dep not in known:
                issues.append(ValidationIssue(
                    path=f"modules.{module.id}.dependencies",
                    message=f"Unknown dependency: {dep}",
                    rule="dangling_dependency",
                    module_ids=(module.id,),
                ))
    return issues


def find_phase_violations(modules: Sequence[Module]) -> list[ValidationIssue]:
    """Edges from a module to a dependency in a strictly later phase."""
    by_id = {m.id: m for m in modules}
    issues: list[ValidationIssue] = []
    for module in modules:
        for dep_id in module.dependencies:
            dep = by_id.get(dep_id)
            if dep is None:
                continue  # reported by find_missing_dependencies
            if dep.phase > module.phase:
                issues.append(ValidationIssue(
                    path=f"modules.{module.id}.dependencies",
                    message=(
                        f'Phase violation: "{module.id}" (phase {module.phase}) depends on '
                        f'"{dep_id}" (phase {dep.phase}). Dependencies must be in the same '
                        "or an earlier phase."
                    ),
                    rule="forward_phase_dependency",
                    module_ids=(module.id, dep_id),
                ))
    return issues


def find_cycle(modules: Sequence[Module]) -> list[str] | None:
    """Depth-first search for a dependency cycle.

    Returns:
        The cycle as a list of ids (first id repeated implicitly), or None.
    """
    by_id = {m.id: m for m in modules}
    done: set[str] = set()
    visiting: set[str] = set()
    path: list[str] = []

    def visit(module_id: str) -> list[str] | None:
        if module_id in done:
            return None
        if module_id in visiting:
            return path[path.index(module_id):]
        module = by_id.get(module_id)
        if module is None:
            return None

        visiting.add(module_id)
        path.append(module_id)
        for dep in module.dependencies:
            cycle = visit(dep)
            if cycle:
                return cycle
        path.pop()
        visiting.discard(module_id)
        done.add(module_id)
        return None

    for module in modules:
        cycle = visit(module.id)
        if cycle:
            return cycle
    return None


def find_graph_issues(modules: Sequence[Module]) -> list[ValidationIssue]:
    """Run every graph check and collect the issues."""
    issues = find_missing_dependencies(modules)
    issues.extend(find_phase_violations(modules))
    cycle = find_cycle(modules)
    if cycle:
        rendered = " -> ".join(cycle + [cycle[0]])
        issues.append(ValidationIssue(
            path=f"modules.{cycle[0]}.dependencies",
            message=f"Dependency cycle detected: {rendered}",
            rule="cycle",
            module_ids=tuple(cycle),
        ))
    return issues


# ── Graph ───────────────────────────────────────────────────────


class DependencyGraph:
    """A validated dependency graph over manifest modules.

    Construct with ``DependencyGraph.build(modules)``; the constructor
    itself assumes the checks have already passed.
    """

    def __init__(self, modules: Sequence[Module]):
        self._modules: dict[str, Module] = {m.id: m for m in modules}
        self._position: dict[str, int] = {m.id: i for i, m in enumerate(modules)}
        self._dependents: dict[str, list[str]] = {m.id: [] for m in modules}
        for module in modules:
            for dep in module.dependencies:
                self._dependents[dep].append(module.id)
        self._order: list[str] | None = None

    @classmethod
    def build(cls, modules: Sequence[Module]) -> DependencyGraph:
        """Validate the edges and build the graph.

        Raises:
            ManifestValidationError: On dangling, forward-phase or cyclic edges.
        """
        issues = find_graph_issues(modules)
        if issues:
            raise ManifestValidationError(issues)
        graph = cls(modules)
        logger.debug("Built dependency graph: %d modules", len(modules))
        return graph

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def module(self, module_id: str) -> Module:
        return self._modules[module_id]

    @property
    def modules(self) -> list[Module]:
        """Modules in manifest order."""
        return sorted(self._modules.values(), key=lambda m: self._position[m.id])

    def dependencies_of(self, module_id: str) -> list[str]:
        return list(self._modules[module_id].dependencies)

    def dependents_of(self, module_id: str) -> list[str]:
        return list(self._dependents[module_id])

    def transitive_dependencies(self, module_ids: Iterable[str]) -> list[str]:
        """Every prerequisite of the given modules, in discovery order."""
        seen: dict[str, None] = {}
        queue = list(module_ids)
        while queue:
            current = queue.pop(0)
            for dep in self._modules[current].dependencies:
                if dep not in seen:
                    seen[dep] = None
                    queue.append(dep)
        return list(seen)

    @property
    def phases(self) -> list[int]:
        return sorted({m.phase for m in self._modules.values()})

    def phase_order(self, phase: int) -> list[str]:
        """Topological order of one phase, ties broken by manifest position."""
        members = [mid for mid, m in self._modules.items() if m.phase == phase]
        member_set = set(members)
        pending = {
            mid: sum(1 for d in self._modules[mid].dependencies if d in member_set)
            for mid in members
        }
        ready = [(self._position[mid], mid) for mid, n in pending.items() if n == 0]
        heapq.heapify(ready)

        ordered: list[str] = []
        while ready:
            _, current = heapq.heappop(ready)
            ordered.append(current)
            for dependent in self._dependents[current]:
                if dependent not in member_set:
                    continue
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, (self._position[dependent], dependent))
        return ordered

    def canonical_order(self) -> list[str]:
        """Phase ascending, topological within phase."""
        if self._order is None:
            order: list[str] = []
            for phase in self.phases:
                order.extend(self.phase_order(phase))
            self._order = order
        return list(self._order)
