"""
Tests for the selection resolver — filters, closure, skips, legacy flags.
"""

import pytest

from flywheel.core.config.loader import load_manifest_bytes
from flywheel.core.errors import SelectionError
from flywheel.core.generators.index import build_index
from flywheel.core.manifest.selection import apply_legacy_flags, normalize_phases, resolve_selection
from flywheel.core.models.index import ManifestIndex
from flywheel.core.models.plan import SelectionRequest


def index_for(raw: bytes) -> ManifestIndex:
    loaded = load_manifest_bytes(raw)
    return build_index(loaded.manifest, loaded.graph, loaded.sha256)


@pytest.fixture
def index(small_manifest_bytes) -> ManifestIndex:
    return index_for(small_manifest_bytes)


@pytest.fixture
def full_index(project_root) -> ManifestIndex:
    return index_for((project_root / "flywheel.manifest.yaml").read_bytes())


class TestDefaults:
    def test_default_plan(self, index):
        plan = resolve_selection(index, SelectionRequest())
        assert plan.order == ("base.system", "lang.x")
        assert plan.excluded == {"cloud.y": "disabled by default"}
        assert plan.reasons == {"base.system": "default", "lang.x": "default"}
        assert plan.warnings == ()

    def test_plan_carries_manifest_sha(self, index):
        plan = resolve_selection(index, SelectionRequest())
        assert plan.manifest_sha256 == index.manifest_sha256
        assert plan.should_run("lang.x")
        assert not plan.should_run("cloud.y")


class TestOnly:
    def test_only_pulls_dependencies(self, index):
        plan = resolve_selection(index, SelectionRequest(only=("cloud.y",)))
        assert plan.order == ("base.system", "cloud.y")
        assert plan.reasons["cloud.y"] == "explicitly requested"
        assert plan.reasons["base.system"] == "dependency of cloud.y"
        assert plan.excluded["lang.x"] == "not selected"

    def test_only_with_no_deps_warns(self, index):
        plan = resolve_selection(index, SelectionRequest(only=("lang.x",), no_deps=True))
        assert plan.order == ("lang.x",)
        assert plan.unmet_dependencies == {"lang.x": ("base.system",)}
        assert len(plan.warnings) == 1
        assert "base.system" in plan.warnings[0]
        assert "--no-deps" in plan.warnings[0]

    def test_only_beats_only_phase(self, index):
        plan = resolve_selection(index, SelectionRequest(only=("lang.x",), only_phases=("8",)))
        assert plan.order == ("base.system", "lang.x")

    def test_transitive_closure(self, full_index):
        plan = resolve_selection(full_index, SelectionRequest(only=("agents.claude",)))
        assert plan.order == ("base.system", "lang.bun", "agents.claude")


class TestPhases:
    def test_phase_by_number(self, index):
        plan = resolve_selection(index, SelectionRequest(only_phases=("8",)))
        assert plan.order == ("base.system", "cloud.y")
        assert plan.reasons["cloud.y"] == "phase 8"
        assert plan.excluded["lang.x"] == "filtered by phase"

    def test_phase_by_alias(self, index):
        by_name = resolve_selection(index, SelectionRequest(only_phases=("lang",)))
        by_number = resolve_selection(index, SelectionRequest(only_phases=("6",)))
        assert by_name.order == by_number.order == ("base.system", "lang.x")

    def test_normalize_phases(self):
        assert normalize_phases(["1", "agents", "Lang", "1", "0", "nope"]) == ([1, 7, 6], ["0", "nope"])


class TestSkips:
    def test_skip_required_dependency_fails(self, index):
        with pytest.raises(SelectionError) as exc:
            resolve_selection(index, SelectionRequest(only=("lang.x",), skip=("base.system",)))
        message = str(exc.value)
        assert "Cannot skip base.system: it is required by lang.x" in message
        assert set(exc.value.module_ids) == {"base.system", "lang.x"}

    def test_skip_with_no_deps_is_accepted(self, index):
        plan = resolve_selection(
            index, SelectionRequest(only=("lang.x",), skip=("base.system",), no_deps=True),
        )
        assert plan.order == ("lang.x",)
        assert plan.unmet_dependencies == {"lang.x": ("base.system",)}

    def test_skip_leaf(self, index):
        plan = resolve_selection(index, SelectionRequest(skip=("lang.x",)))
        assert plan.order == ("base.system",)
        assert plan.excluded["lang.x"] == "explicitly skipped"

    def test_skip_tag(self, index):
        plan = resolve_selection(index, SelectionRequest(only=("cloud.y",), skip_tags=("cloud",)))
        assert plan.order == ("base.system",)
        assert plan.excluded["cloud.y"] == "skipped tag cloud"

    def test_skip_category(self, full_index):
        plan = resolve_selection(full_index, SelectionRequest(skip_categories=("cloud",)))
        assert not any(mid.startswith("cloud.") for mid in plan.order)
        assert plan.excluded["cloud.wrangler"] == "skipped category cloud"


class TestUnknownReferences:
    @pytest.mark.parametrize("request_kwargs, fragment", [
        ({"only": ("lang.nope",)}, "unknown module(s): lang.nope"),
        ({"skip": ("ghost",)}, "unknown module(s): ghost"),
        ({"only_phases": ("42",)}, "unknown phase(s): 42"),
        ({"only_phases": ("galaxy",)}, "unknown phase(s): galaxy"),
        ({"skip_tags": ("gpu",)}, "unknown tag(s): gpu"),
        ({"skip_categories": ("games",)}, "unknown category(s): games"),
    ])
    def test_rejected_before_resolution(self, index, request_kwargs, fragment):
        with pytest.raises(SelectionError) as exc:
            resolve_selection(index, SelectionRequest(**request_kwargs))
        assert fragment in str(exc.value)
        assert "--list-modules" in str(exc.value)


class TestLegacyFlags:
    def test_flags_translate_to_skips(self):
        request = apply_legacy_flags(SelectionRequest(), skip_postgres=True, skip_vault=True, skip_cloud=True)
        assert request.skip == ("db.postgres18", "tools.vault")
        assert request.skip_tags == ("cloud",)

    def test_no_flags_is_identity(self):
        request = SelectionRequest(skip=("a",))
        assert apply_legacy_flags(request) is request

    def test_same_plan_as_explicit_skips(self, full_index):
        legacy = apply_legacy_flags(SelectionRequest(), skip_postgres=True, skip_vault=True, skip_cloud=True)
        explicit = SelectionRequest(skip=("db.postgres18", "tools.vault"), skip_tags=("cloud",))
        assert resolve_selection(full_index, legacy).order == resolve_selection(full_index, explicit).order

    def test_legacy_plus_explicit_deduplicates(self):
        request = apply_legacy_flags(SelectionRequest(skip=("db.postgres18",)), skip_postgres=True)
        assert request.skip == ("db.postgres18",)
