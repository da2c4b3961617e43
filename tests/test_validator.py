"""
Tests for the manifest validator — schema, cross-module rules, lint.
"""

import pytest

from conftest import manifest_data, module_entry

from flywheel.core.errors import ManifestValidationError
from flywheel.core.manifest.validator import parse_manifest, validate_manifest
from flywheel.core.models.manifest import ChecksumRegistry

ZERO = "0" * 64


def rules(result) -> set[str]:
    return {issue.rule for issue in result.errors}


class TestSchema:
    def test_valid_manifest(self, small_manifest_data):
        result = validate_manifest(small_manifest_data)
        assert result.valid
        assert result.manifest is not None
        assert result.manifest.module_ids == ["base.system", "lang.x", "cloud.y"]

    def test_not_a_mapping(self):
        result = validate_manifest(["nope"])
        assert not result.valid
        assert rules(result) == {"schema"}

    def test_no_modules(self):
        result = validate_manifest({"name": "t", "id": "t", "modules": []})
        assert not result.valid
        assert result.errors[0].path == "modules"

    def test_bad_id_is_reported_with_id_rule(self):
        result = validate_manifest(manifest_data(module_entry("Bad-Id")))
        assert rules(result) == {"id_grammar"}
        assert result.errors[0].module_ids == ("Bad-Id",)

    def test_missing_content(self):
        entry = module_entry("a.b")
        del entry["install"]
        result = validate_manifest(manifest_data(entry))
        assert rules(result) == {"missing_content"}
        assert "verified_installer or install" in result.errors[0].message

    def test_every_bad_module_is_reported(self):
        result = validate_manifest(manifest_data(
            module_entry("Bad"),
            module_entry("ok.one"),
            module_entry("x.y", run_as="nobody"),
        ))
        ids = {mid for issue in result.errors for mid in issue.module_ids}
        assert ids == {"Bad", "x.y"}

    def test_header_errors(self):
        data = manifest_data(module_entry("a.b"))
        data["id"] = "Not Valid"
        result = validate_manifest(data)
        assert [i.path for i in result.errors] == ["id"]

    def test_duplicate_id(self):
        result = validate_manifest(manifest_data(module_entry("a.b"), module_entry("a.b")))
        assert rules(result) == {"duplicate_id"}
        assert "a.b" in result.errors[0].message


class TestCrossModule:
    def test_dangling_dependency(self):
        result = validate_manifest(manifest_data(module_entry("a.b", dependencies=["ghost.mod"])))
        assert rules(result) == {"dangling_dependency"}
        assert "ghost.mod" in result.errors[0].message

    def test_forward_phase_dependency(self):
        result = validate_manifest(manifest_data(
            module_entry("a.early", phase=1, dependencies=["a.late"]),
            module_entry("a.late", phase=2),
        ))
        assert rules(result) == {"forward_phase_dependency"}
        assert result.errors[0].module_ids == ("a.early", "a.late")

    def test_cycle_path_is_reported(self):
        result = validate_manifest(manifest_data(
            module_entry("a.one", dependencies=["a.two"]),
            module_entry("a.two", dependencies=["a.three"]),
            module_entry("a.three", dependencies=["a.one"]),
        ))
        assert rules(result) == {"cycle"}
        assert "a.one -> a.two -> a.three -> a.one" in result.errors[0].message

    def test_derived_name_collision(self):
        result = validate_manifest(manifest_data(module_entry("a.b_c"), module_entry("a_b.c")))
        assert rules(result) == {"duplicate_procedure"}
        assert result.errors[0].module_ids == ("a.b_c", "a_b.c")
        assert "install_a_b_c" in result.errors[0].message

    def test_name_colliding_with_category_runner(self):
        result = validate_manifest(manifest_data(module_entry("lang"), module_entry("lang.go")))
        assert rules(result) == {"reserved_procedure"}
        assert result.errors[0].module_ids == ("lang",)

    def test_orchestration_only_modules_have_no_procedure(self):
        result = validate_manifest(manifest_data(
            module_entry("a.b_c"),
            {"id": "a_b.c", "description": "x", "generated": False},
        ))
        assert result.valid

    def test_checksum_coverage(self):
        entry = module_entry("lang.bun", verified_installer={"tool": "bun", "runner": "bash"})
        del entry["install"]
        data = manifest_data(entry)

        missing = validate_manifest(data, ChecksumRegistry())
        assert rules(missing) == {"checksum_coverage"}

        covered = validate_manifest(data, ChecksumRegistry(
            installers={"bun": {"url": "https://bun.sh/install", "sha256": ZERO}},
        ))
        assert covered.valid

    def test_checksums_not_checked_without_registry(self):
        entry = module_entry("lang.bun", verified_installer={"tool": "bun", "runner": "bash"})
        assert validate_manifest(manifest_data(entry)).valid


class TestLint:
    def test_prose_install_warns(self):
        data = manifest_data(module_entry("a.b", install=["Ensure the thing is present"]))
        result = validate_manifest(data)
        assert result.valid
        assert [w.rule for w in result.warnings] == ["prose_install"]

    def test_mixed_steps_do_not_warn(self):
        data = manifest_data(module_entry("a.b", install=["Install the tool", "apt-get install -y tool"]))
        assert validate_manifest(data).warnings == []

    def test_strict_promotes_warnings(self):
        data = manifest_data(module_entry("a.b", install=['"quoted description"']))
        result = validate_manifest(data, strict=True)
        assert not result.valid
        assert rules(result) == {"prose_install"}


class TestParseManifest:
    def test_raises_with_every_issue(self):
        data = manifest_data(
            module_entry("a.one", dependencies=["ghost.one"]),
            module_entry("a.two", dependencies=["ghost.two"]),
        )
        with pytest.raises(ManifestValidationError) as exc:
            parse_manifest(data)
        assert len(exc.value.issues) == 2
        assert set(exc.value.module_ids) == {"a.one", "a.two"}

    def test_returns_manifest(self, small_manifest_data):
        manifest = parse_manifest(small_manifest_data)
        assert manifest.id == "test_flywheel"
