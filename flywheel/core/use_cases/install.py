"""
Install use case — index → plan → procedures → run.

The full vertical slice from selection flags to executed procedures:
load the generated index, resolve the plan once, load the explicit
procedure table, reconcile resume state, then hand everything to the
executor. Works identically on a local checkout and on a bootstrap
workspace; only ``generated_dir`` differs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from flywheel.adapters.base import ScriptRunner
from flywheel.core.config.loader import CHECKSUMS_FILE, load_checksums
from flywheel.core.config.settings import Settings
from flywheel.core.engine.executor import ExecutionReport, install_all
from flywheel.core.engine.procedures import load_procedures
from flywheel.core.engine.runtime import Runtime
from flywheel.core.errors import FlywheelError, ModuleExecutionError, SelectionError
from flywheel.core.manifest.selection import resolve_selection
from flywheel.core.models.index import INDEX_FILENAME, ManifestIndex
from flywheel.core.models.plan import SelectionPlan, SelectionRequest
from flywheel.core.persistence.state_file import (
    clear_state,
    default_state_path,
    load_state,
    reconcile,
)

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """Result of planning and (optionally) running an install."""

    index: ManifestIndex | None = None
    plan: SelectionPlan | None = None
    report: ExecutionReport | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    error_ids: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        if self.error:
            return False
        return self.report is None or self.report.all_ok

    def to_dict(self) -> dict:
        result: dict = {"ok": self.ok}
        if self.error:
            result["error"] = self.error
            result["module_ids"] = list(self.error_ids)
            return result
        if self.plan:
            result["plan"] = self.plan.to_dict()
        if self.report:
            result["report"] = self.report.to_dict()
        result["warnings"] = list(self.warnings)
        return result


def plan_install(generated_dir: Path, request: SelectionRequest) -> InstallResult:
    """Resolve the plan without running anything (--print-plan, --list-modules)."""
    result = InstallResult()
    try:
        result.index = ManifestIndex.load(generated_dir / INDEX_FILENAME)
        result.plan = resolve_selection(result.index, request)
    except SelectionError as e:
        result.error = str(e)
        result.error_ids = list(e.module_ids)
        return result
    except FlywheelError as e:
        result.error = str(e)
        return result
    result.warnings.extend(result.plan.warnings)
    return result


def run_install(
    generated_dir: Path,
    request: SelectionRequest,
    settings: Settings,
    *,
    dry_run: bool = False,
    force_reinstall: bool = False,
    checksums_path: Path | None = None,
    runner: ScriptRunner | None = None,
    echo: bool = True,
) -> InstallResult:
    """Plan and execute an install.

    Args:
        generated_dir: Directory holding the generated artifacts.
        request: Selection filters (legacy flags already translated).
        settings: Target identity, timeouts and state file location.
        dry_run: Narrate instead of acting; resume state is untouched.
        force_reinstall: Discard saved progress and start from the first module.
        checksums_path: Verified installer registry (default: next to generated_dir).
        runner: Script runner; defaults to the local shell runner.
        echo: Echo runtime log lines to the terminal.

    Returns:
        InstallResult; ``error`` is set for validation, selection,
        contract and required-module failures.
    """
    result = plan_install(generated_dir, request)
    if result.error:
        return result
    if result.index is None or result.plan is None:
        raise FlywheelError("Selection produced no plan")
    plan = result.plan

    if runner is None:
        from flywheel.adapters.shell.command import ShellScriptRunner

        runner = ShellScriptRunner()

    try:
        procedures = load_procedures(generated_dir, result.index)
        checksums = load_checksums(checksums_path or generated_dir.parent / CHECKSUMS_FILE)

        runtime = Runtime(
            target_user=settings.target_user,
            target_home=settings.resolved_target_home,
            plan=plan,
            runner=runner,
            dry_run=dry_run,
            checksums=checksums,
            command_timeout=settings.command_timeout,
            check_timeout=settings.check_timeout,
            fetch_timeout=settings.fetch_timeout,
            echo=echo,
        )

        state = state_path = None
        if not dry_run:
            state_path = settings.state_file or default_state_path(runtime.target_home)
            saved = load_state(state_path)
            if force_reinstall and saved is not None:
                runtime.log_info(f"Discarding saved progress ({len(saved.completed)} completed module(s))")
                clear_state(state_path)
                saved = None
            state, warning = reconcile(saved, plan)
            if warning:
                runtime.log_warn(warning)
                result.warnings.append(warning)

        result.report = install_all(
            plan, result.index, procedures, runtime,
            state=state, state_path=state_path,
        )
        result.warnings.extend(result.report.warnings)
        result.report.raise_for_failure()
    except ModuleExecutionError as e:
        result.error = str(e)
        result.error_ids = [e.failure.module_id]
    except FlywheelError as e:
        result.error = str(e)
        result.error_ids = list(getattr(e, "module_ids", []) or [])

    return result
