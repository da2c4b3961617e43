"""
Tests for the dependency graph — checks and canonical ordering.
"""

import pytest

from flywheel.core.errors import ManifestValidationError
from flywheel.core.manifest.graph import DependencyGraph, find_cycle
from flywheel.core.models.module import Module


def mod(module_id: str, phase: int = 1, deps: list[str] | None = None) -> Module:
    return Module(
        id=module_id, description=module_id, phase=phase,
        dependencies=deps or [], install=["true"], verify=["true"],
    )


class TestOrdering:
    def test_phase_ascending(self):
        graph = DependencyGraph.build([
            mod("lang.x", phase=6, deps=["base.system"]),
            mod("base.system", phase=1),
            mod("shell.zsh", phase=4, deps=["base.system"]),
        ])
        assert graph.canonical_order() == ["base.system", "shell.zsh", "lang.x"]

    def test_ties_broken_by_manifest_position(self):
        graph = DependencyGraph.build([mod("c.c"), mod("a.a"), mod("b.b")])
        assert graph.canonical_order() == ["c.c", "a.a", "b.b"]

    def test_dependencies_within_phase_come_first(self):
        graph = DependencyGraph.build([
            mod("agents.codex", phase=7, deps=["agents.core"]),
            mod("agents.claude", phase=7),
            mod("agents.core", phase=7),
        ])
        assert graph.canonical_order() == ["agents.claude", "agents.core", "agents.codex"]

    def test_order_is_deterministic(self):
        modules = [mod(f"m.n{i}", phase=1 + i % 3) for i in range(12)]
        first = DependencyGraph.build(modules).canonical_order()
        assert DependencyGraph.build(modules).canonical_order() == first

    def test_every_dependency_precedes_its_dependent(self, small_manifest_data):
        modules = [Module.model_validate(m) for m in small_manifest_data["modules"]]
        graph = DependencyGraph.build(modules)
        order = graph.canonical_order()
        for module in modules:
            for dep in module.dependencies:
                assert order.index(dep) < order.index(module.id)


class TestQueries:
    def test_dependents_and_transitive(self):
        graph = DependencyGraph.build([
            mod("base.system"),
            mod("lang.bun", phase=6, deps=["base.system"]),
            mod("agents.claude", phase=7, deps=["lang.bun"]),
        ])
        assert graph.dependents_of("base.system") == ["lang.bun"]
        assert graph.transitive_dependencies(["agents.claude"]) == ["lang.bun", "base.system"]
        assert graph.phases == [1, 6, 7]
        assert "lang.bun" in graph
        assert len(graph) == 3


class TestChecks:
    def test_cycle_is_found(self):
        cycle = find_cycle([mod("a.a", deps=["a.b"]), mod("a.b", deps=["a.a"])])
        assert cycle == ["a.a", "a.b"]

    def test_acyclic(self):
        assert find_cycle([mod("a.a"), mod("a.b", deps=["a.a"])]) is None

    def test_build_rejects_bad_edges(self):
        with pytest.raises(ManifestValidationError) as exc:
            DependencyGraph.build([mod("a.a", deps=["a.missing"])])
        assert exc.value.issues[0].rule == "dangling_dependency"

    def test_build_rejects_forward_phase(self):
        with pytest.raises(ManifestValidationError, match="Phase violation"):
            DependencyGraph.build([mod("a.a", phase=1, deps=["a.b"]), mod("a.b", phase=3)])
