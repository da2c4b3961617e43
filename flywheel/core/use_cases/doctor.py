"""
Doctor use case — re-run generated verify checks as health checks.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from flywheel.adapters.base import ScriptRequest, ScriptRunner
from flywheel.core.config.settings import Settings
from flywheel.core.generators.doctor import DOCTOR_FILENAME
from flywheel.core.models.module import Script

logger = logging.getLogger(__name__)


@dataclass
class CheckOutcome:
    id: str
    module: str
    description: str
    required: bool
    passed: bool
    error: str | None = None


@dataclass
class DoctorResult:
    checks: list[CheckOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def failed_required(self) -> list[CheckOutcome]:
        return [c for c in self.checks if c.required and not c.passed]

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed_required

    def to_dict(self) -> dict:
        if self.error:
            return {"ok": False, "error": self.error}
        return {
            "ok": self.ok,
            "passed": sum(1 for c in self.checks if c.passed),
            "failed": sum(1 for c in self.checks if not c.passed),
            "checks": [c.__dict__ for c in self.checks],
        }


def run_doctor(
    generated_dir: Path,
    settings: Settings,
    *,
    modules: list[str] | None = None,
    runner: ScriptRunner | None = None,
) -> DoctorResult:
    """Run every doctor check (optionally limited to some modules)."""
    path = generated_dir / DOCTOR_FILENAME
    if not path.is_file():
        return DoctorResult(error=f"{path} not found. Run 'flywheel manifest generate'.")
    try:
        checks = json.loads(path.read_text(encoding="utf-8"))["checks"]
    except (ValueError, KeyError) as e:
        return DoctorResult(error=f"Invalid {path}: {e}")

    if runner is None:
        from flywheel.adapters.shell.command import ShellScriptRunner

        runner = ShellScriptRunner()

    result = DoctorResult()
    for check in checks:
        if modules and check["module"] not in modules:
            continue
        receipt = runner.run(ScriptRequest(
            module_id=check["module"],
            identity=check["run_as"],
            script=Script(body=check["command"]),
            target_user=settings.target_user,
            target_home=settings.resolved_target_home,
            timeout=settings.check_timeout,
        ))
        result.checks.append(CheckOutcome(
            id=check["id"],
            module=check["module"],
            description=check["description"],
            required=check["required"],
            passed=receipt.ok,
            error=receipt.error,
        ))
    logger.info("Doctor: %d checks, %d required failing", len(result.checks), len(result.failed_required))
    return result
