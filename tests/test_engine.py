"""
Tests for the execution engine — generated procedures run end to end
against a mock runner, plus the install use case around them.
"""

import pytest
import yaml

from conftest import manifest_data, module_entry

from flywheel.core.config.settings import Settings
from flywheel.core.engine.executor import install_all
from flywheel.core.engine.procedures import import_generated, load_procedures
from flywheel.core.engine.runtime import Runtime
from flywheel.core.errors import ContractViolation, ModuleExecutionError
from flywheel.core.generators import generate_artifacts, write_artifacts
from flywheel.core.manifest.selection import resolve_selection
from flywheel.core.models.action import Receipt
from flywheel.core.models.index import IndexEntry, ManifestIndex
from flywheel.core.models.manifest import ChecksumRegistry
from flywheel.core.models.plan import SelectionPlan, SelectionRequest
from flywheel.core.persistence.state_file import InstallState, load_state, save_state
from flywheel.core.use_cases.install import plan_install, run_install


@pytest.fixture
def generated(generated_repo):
    return generated_repo / "generated"


@pytest.fixture
def index(generated) -> ManifestIndex:
    return ManifestIndex.load(generated / "manifest_index.json")


@pytest.fixture
def procedures(generated, index):
    return load_procedures(generated, index)


def runtime_for(plan, runner, dry_run=False) -> Runtime:
    return Runtime(
        target_user="ubuntu", target_home="/home/ubuntu",
        plan=plan, runner=runner, dry_run=dry_run, echo=False,
    )


def default_plan(index, **kwargs) -> SelectionPlan:
    return resolve_selection(index, SelectionRequest(**kwargs))


# ── Generated procedures ─────────────────────────────────────────────


class TestProcedures:
    def test_not_in_plan_is_skipped(self, index, procedures, mock_runner):
        rt = runtime_for(default_plan(index), mock_runner)
        receipt = procedures["cloud.y"](rt)
        assert receipt.skipped
        assert receipt.output == "not in plan"
        assert mock_runner.call_count == 0

    def test_installed_check_short_circuits(self, index, procedures, mock_runner):
        rt = runtime_for(default_plan(index), mock_runner)
        receipt = procedures["lang.x"](rt)
        assert receipt.skipped
        assert receipt.output == "already installed"
        assert mock_runner.scripts_for("lang.x") == ["command -v x"]

    def test_install_then_verify(self, index, procedures, mock_runner):
        mock_runner.fail_when("command -v x")
        rt = runtime_for(default_plan(index), mock_runner)
        receipt = procedures["lang.x"](rt)
        assert receipt.ok
        scripts = mock_runner.scripts_for("lang.x")
        assert scripts == [
            "command -v x",
            "curl -fsSL https://x.example/install.sh -o /tmp/x.sh\nbash /tmp/x.sh",
            "x --version",
            "x doctor",
        ]
        assert {r.identity for r in mock_runner.calls_for("lang.x")} == {"target_user"}

    def test_root_identity(self, index, procedures, mock_runner):
        procedures["base.system"](runtime_for(default_plan(index), mock_runner))
        assert {r.identity for r in mock_runner.calls_for("base.system")} == {"root"}

    def test_install_failure(self, index, procedures, mock_runner):
        mock_runner.fail_when("command -v x")
        mock_runner.fail_when("bash /tmp/x.sh", "exit 1")
        receipt = procedures["lang.x"](runtime_for(default_plan(index), mock_runner))
        assert receipt.failed
        assert receipt.error == "install failed: exit 1"
        assert "x --version" not in mock_runner.scripts_for("lang.x")

    def test_required_verify_failure(self, index, procedures, mock_runner):
        mock_runner.fail_when("command -v x")
        mock_runner.fail_when("x --version")
        receipt = procedures["lang.x"](runtime_for(default_plan(index), mock_runner))
        assert receipt.failed
        assert receipt.error == "verify failed: x --version"

    def test_optional_check_only_warns(self, index, procedures, mock_runner, caplog):
        mock_runner.fail_when("command -v x")
        mock_runner.fail_when("x doctor")
        with caplog.at_level("WARNING", logger="flywheel.runtime"):
            receipt = procedures["lang.x"](runtime_for(default_plan(index), mock_runner))
        assert receipt.ok
        assert "optional check failed: x doctor" in caplog.text

    def test_optional_module_verify_only_warns(self, index, procedures, mock_runner):
        mock_runner.fail_when("y --version")
        plan = default_plan(index, only=("cloud.y",))
        assert procedures["cloud.y"](runtime_for(plan, mock_runner)).ok

    def test_dry_run_narrates_without_acting(self, index, procedures, mock_runner, caplog):
        mock_runner.fail_when("command -v x")
        rt = runtime_for(default_plan(index), mock_runner, dry_run=True)
        with caplog.at_level("INFO", logger="flywheel.runtime"):
            receipt = procedures["lang.x"](rt)
        assert receipt.ok
        assert receipt.metadata == {"dry_run": True}
        # only the read-only installed check reached the runner
        assert mock_runner.scripts_for("lang.x") == ["command -v x"]
        assert "[dry-run] lang.x: would run 2 install step(s) as target_user:" in caplog.text
        assert "[dry-run]   bash /tmp/x.sh" in caplog.text

    def test_contract_checked_before_anything(self, index, procedures, mock_runner):
        rt = runtime_for(default_plan(index), mock_runner)
        rt.target_home = ""
        with pytest.raises(ContractViolation, match="target_home"):
            procedures["base.system"](rt)
        assert mock_runner.call_count == 0

    def test_category_runner(self, generated, index, mock_runner):
        module = import_generated(generated / "install_base.py")
        receipts = module.install_base(runtime_for(default_plan(index), mock_runner))
        assert [r.module_id for r in receipts] == ["base.system"]

    def test_installed_primitive_is_part_of_the_contract(self, index, procedures, mock_runner):
        rt = runtime_for(default_plan(index), mock_runner)
        rt.installed = None
        with pytest.raises(ContractViolation, match=r"installed\(\)"):
            procedures["lang.x"](rt)
        assert mock_runner.call_count == 0
        # base.system has no installed check, so it never needs the primitive
        assert procedures["base.system"](rt).ok


class TestCategoryRunner:
    def _category(self, tmp_path, *modules):
        data = yaml.safe_dump(manifest_data(*modules)).encode("utf-8")
        write_artifacts(generate_artifacts(data, ChecksumRegistry()), tmp_path)
        index = ManifestIndex.load(tmp_path / "manifest_index.json")
        return import_generated(tmp_path / "install_tools.py"), default_plan(index)

    def test_optional_failure_does_not_stop_the_category(self, tmp_path, mock_runner):
        module, plan = self._category(
            tmp_path, module_entry("tools.opt", optional=True), module_entry("tools.req"),
        )
        assert module.OPTIONAL == frozenset({"tools.opt"})
        mock_runner.fail_when("install tools.opt")
        receipts = module.install_tools(runtime_for(plan, mock_runner))
        assert [(r.module_id, r.status) for r in receipts] == [("tools.opt", "failed"), ("tools.req", "ok")]

    def test_required_failure_stops_the_category(self, tmp_path, mock_runner):
        module, plan = self._category(
            tmp_path, module_entry("tools.first"), module_entry("tools.second", optional=True),
        )
        mock_runner.fail_when("install tools.first")
        receipts = module.install_tools(runtime_for(plan, mock_runner))
        assert [r.module_id for r in receipts] == ["tools.first"]
        assert mock_runner.calls_for("tools.second") == []


# ── Orchestration ────────────────────────────────────────────────────


class TestInstallAll:
    def test_runs_plan_in_order(self, index, procedures, mock_runner):
        mock_runner.fail_when("command -v x")
        plan = default_plan(index)
        report = install_all(plan, index, procedures, runtime_for(plan, mock_runner))
        assert [r.module_id for r in report.receipts] == ["base.system", "lang.x"]
        assert report.status == "ok"
        assert report.plan_fingerprint == plan.fingerprint

    def test_required_failure_stops(self, index, procedures, mock_runner):
        mock_runner.set_failure("base.system")
        plan = default_plan(index)
        report = install_all(plan, index, procedures, runtime_for(plan, mock_runner))
        assert report.status == "failed"
        assert report.failure.module_id == "base.system"
        assert mock_runner.calls_for("lang.x") == []
        with pytest.raises(ModuleExecutionError, match="base.system"):
            report.raise_for_failure()

    def test_optional_failure_continues(self, mock_runner):
        index = ManifestIndex(
            manifest_id="t", manifest_sha256="0" * 64,
            order=["tools.opt", "tools.req"],
            modules={
                "tools.opt": IndexEntry(phase=1, category="tools", optional=True),
                "tools.req": IndexEntry(phase=1, category="tools"),
            },
        )
        plan = resolve_selection(index, SelectionRequest())
        procedures = {
            "tools.opt": lambda rt: Receipt.failure("tools.opt", "nope"),
            "tools.req": lambda rt: Receipt.success("tools.req", "installed"),
        }
        report = install_all(plan, index, procedures, runtime_for(plan, mock_runner))
        assert report.failure is None
        assert report.status == "partial"
        assert [r.status for r in report.receipts] == ["failed", "ok"]
        assert report.warnings == ["Optional module tools.opt failed: nope"]

    def test_missing_procedure_is_a_failure(self, index, mock_runner):
        plan = default_plan(index)
        report = install_all(plan, index, {}, runtime_for(plan, mock_runner))
        assert report.failure.module_id == "base.system"
        assert "No generated procedure" in report.failure.reason

    def test_orchestration_only_is_skipped(self, mock_runner):
        index = ManifestIndex(
            manifest_id="t", manifest_sha256="0" * 64,
            order=["users.ubuntu"],
            modules={"users.ubuntu": IndexEntry(phase=2, category="users", generated=False)},
        )
        plan = resolve_selection(index, SelectionRequest())
        report = install_all(plan, index, {}, runtime_for(plan, mock_runner))
        assert report.receipts[0].output == "orchestration-only"
        assert report.status == "ok"

    def test_dry_run_installs_nothing(self, index, procedures, mock_runner):
        plan = default_plan(index)
        report = install_all(plan, index, procedures, runtime_for(plan, mock_runner, dry_run=True))
        assert report.dry_run
        assert all(r.metadata.get("dry_run") or r.skipped for r in report.receipts)
        assert mock_runner.calls_for("base.system") == []


class TestResume:
    def test_progress_is_saved(self, tmp_path, index, procedures, mock_runner):
        mock_runner.fail_when("command -v x")
        mock_runner.fail_when("x --version")
        plan = default_plan(index)
        state_path = tmp_path / "state.json"
        state = InstallState(plan_fingerprint=plan.fingerprint)
        install_all(plan, index, procedures, runtime_for(plan, mock_runner), state=state, state_path=state_path)
        saved = load_state(state_path)
        assert saved.completed == ["base.system"]
        assert saved.failed == ["lang.x"]

    def test_finished_run_clears_progress(self, tmp_path, index, procedures, mock_runner):
        plan = default_plan(index)
        state_path = tmp_path / "state.json"
        report = install_all(
            plan, index, procedures, runtime_for(plan, mock_runner),
            state=InstallState(plan_fingerprint=plan.fingerprint), state_path=state_path,
        )
        assert report.status == "ok"
        assert not state_path.exists()

    def test_completed_modules_are_skipped(self, tmp_path, index, procedures, mock_runner):
        plan = default_plan(index)
        state = InstallState(plan_fingerprint=plan.fingerprint, completed=["base.system"])
        report = install_all(
            plan, index, procedures, runtime_for(plan, mock_runner),
            state=state, state_path=tmp_path / "state.json",
        )
        assert report.receipts[0].output == "completed in a previous run"
        assert mock_runner.calls_for("base.system") == []

    def test_failure_is_recorded(self, tmp_path, index, procedures, mock_runner):
        mock_runner.set_failure("base.system")
        plan = default_plan(index)
        state_path = tmp_path / "state.json"
        install_all(
            plan, index, procedures, runtime_for(plan, mock_runner),
            state=InstallState(plan_fingerprint=plan.fingerprint), state_path=state_path,
        )
        assert load_state(state_path).failed == ["base.system"]

    def test_dry_run_never_writes_state(self, tmp_path, index, procedures, mock_runner):
        plan = default_plan(index)
        state_path = tmp_path / "state.json"
        install_all(
            plan, index, procedures, runtime_for(plan, mock_runner, dry_run=True),
            state=InstallState(plan_fingerprint=plan.fingerprint), state_path=state_path,
        )
        assert not state_path.exists()


# ── Use case ─────────────────────────────────────────────────────────


class TestRunInstall:
    def _settings(self, tmp_path) -> Settings:
        return Settings(target_home=str(tmp_path / "home"), state_file=tmp_path / "state.json")

    def test_plan_only(self, generated):
        result = plan_install(generated, SelectionRequest(only=("cloud.y",)))
        assert result.ok
        assert result.plan.order == ("base.system", "cloud.y")

    def test_selection_error_is_captured(self, generated):
        result = plan_install(generated, SelectionRequest(only=("nope.nope",)))
        assert not result.ok
        assert result.error_ids == ["nope.nope"]

    def test_missing_index(self, tmp_path):
        result = plan_install(tmp_path, SelectionRequest())
        assert "manifest generate" in result.error

    def test_full_run(self, tmp_path, generated, mock_runner):
        result = run_install(generated, SelectionRequest(), self._settings(tmp_path), runner=mock_runner, echo=False)
        assert result.ok
        assert result.report.succeeded == 1   # lang.x reports already installed
        assert not (tmp_path / "state.json").exists()

    def test_rerun_after_success_starts_over(self, tmp_path, generated, mock_runner):
        settings = self._settings(tmp_path)
        run_install(generated, SelectionRequest(), settings, runner=mock_runner, echo=False)
        mock_runner.reset()

        result = run_install(generated, SelectionRequest(), settings, runner=mock_runner, echo=False)
        assert result.ok
        assert mock_runner.calls_for("base.system") != []
        assert "completed in a previous run" not in [r.output for r in result.report.receipts]

    def test_force_reinstall_discards_saved_progress(self, tmp_path, generated, mock_runner):
        settings = self._settings(tmp_path)
        plan = plan_install(generated, SelectionRequest()).plan
        save_state(InstallState(plan_fingerprint=plan.fingerprint, completed=["base.system"]), settings.state_file)

        result = run_install(
            generated, SelectionRequest(), settings,
            force_reinstall=True, runner=mock_runner, echo=False,
        )
        assert result.ok
        assert mock_runner.calls_for("base.system") != []
        assert not settings.state_file.exists()

    def test_changed_plan_restarts(self, tmp_path, generated, mock_runner):
        settings = self._settings(tmp_path)
        mock_runner.set_failure("base.system")
        run_install(generated, SelectionRequest(skip=("lang.x",)), settings, runner=mock_runner, echo=False)
        mock_runner.reset()

        result = run_install(generated, SelectionRequest(), settings, runner=mock_runner, echo=False)
        assert any("Plan changed" in w for w in result.warnings)
        assert mock_runner.calls_for("base.system") != []

    def test_same_plan_resumes(self, tmp_path, generated, mock_runner):
        settings = self._settings(tmp_path)
        mock_runner.fail_when("command -v x")
        mock_runner.fail_when("x --version")
        first = run_install(generated, SelectionRequest(), settings, runner=mock_runner, echo=False)
        assert first.error_ids == ["lang.x"]

        mock_runner.reset()
        second = run_install(generated, SelectionRequest(), settings, runner=mock_runner, echo=False)
        assert second.ok
        assert mock_runner.calls_for("base.system") == []

    def test_dry_run(self, tmp_path, generated, mock_runner):
        result = run_install(
            generated, SelectionRequest(), self._settings(tmp_path),
            dry_run=True, runner=mock_runner, echo=False,
        )
        assert result.ok
        assert result.report.dry_run
        assert not (tmp_path / "state.json").exists()

    def test_required_failure_is_an_error(self, tmp_path, generated, mock_runner):
        mock_runner.set_failure("base.system")
        result = run_install(generated, SelectionRequest(), self._settings(tmp_path), runner=mock_runner, echo=False)
        assert not result.ok
        assert result.error_ids == ["base.system"]
        assert result.to_dict()["module_ids"] == ["base.system"]
