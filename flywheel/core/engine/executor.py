"""
Engine executor — the thin orchestration loop.

Walks the plan's order (phase ascending, topological within phase),
dispatching each module through the explicit id → procedure table.

    required module fails   → stop; later modules never run
    optional module fails   → warn, continue
    contract violation      → propagates; nothing further runs
    generated: false        → orchestration-only, skipped here

Progress is persisted after every module (unless dry-run) so an
interrupted run can resume under the same plan. A run that finishes
without a required failure clears it again, so the next run starts over
and relies on the installed checks.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from flywheel.core.engine.runtime import Runtime
from flywheel.core.errors import ModuleExecutionError, ModuleFailure
from flywheel.core.models.action import Receipt
from flywheel.core.models.index import ManifestIndex
from flywheel.core.models.plan import SelectionPlan
from flywheel.core.persistence.state_file import InstallState, clear_state, save_state

logger = logging.getLogger(__name__)

Procedure = Callable[[Runtime], Receipt]


@dataclass
class ExecutionReport:
    """Result of running a plan."""

    plan_fingerprint: str = ""
    dry_run: bool = False
    receipts: list[Receipt] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failure: ModuleFailure | None = None

    @property
    def total(self) -> int:
        return len(self.receipts)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.receipts if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.receipts if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.receipts if r.skipped)

    @property
    def all_ok(self) -> bool:
        return self.failure is None

    @property
    def status(self) -> str:
        if self.failure is not None:
            return "failed"
        if self.failed:
            return "partial"
        return "ok"

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise ModuleExecutionError(self.failure)

    def to_dict(self) -> dict:
        return {
            "plan_fingerprint": self.plan_fingerprint,
            "dry_run": self.dry_run,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "failure": (
                {"module_id": self.failure.module_id, "reason": self.failure.reason}
                if self.failure else None
            ),
            "warnings": list(self.warnings),
            "receipts": [r.model_dump(mode="json") for r in self.receipts],
        }


def install_all(
    plan: SelectionPlan,
    index: ManifestIndex,
    procedures: Mapping[str, Procedure],
    runtime: Runtime,
    *,
    state: InstallState | None = None,
    state_path: Path | None = None,
) -> ExecutionReport:
    """Run every module of the plan in order.

    Args:
        plan: The resolved, immutable plan.
        index: Index the plan was resolved from.
        procedures: Explicit id → procedure table.
        runtime: Bindings and primitives handed to each procedure.
        state: Progress to resume from (already reconciled with ``plan``).
        state_path: Where to persist progress; ignored under dry-run.

    Raises:
        ContractViolation: If the runtime is incomplete.
    """
    report = ExecutionReport(plan_fingerprint=plan.fingerprint, dry_run=runtime.dry_run)
    persist = state is not None and state_path is not None and not runtime.dry_run

    for module_id in plan.order:
        entry = index.entry(module_id)

        if not entry.generated:
            logger.debug("%s is orchestration-only; no generated procedure", module_id)
            report.receipts.append(Receipt.skip(module_id, "orchestration-only"))
            continue

        if state is not None and state.is_completed(module_id):
            runtime.log_info(f"{module_id}: completed in a previous run")
            report.receipts.append(Receipt.skip(module_id, "completed in a previous run"))
            continue

        procedure = procedures.get(module_id)
        if procedure is None:
            receipt = Receipt.failure(module_id, f"No generated procedure for {module_id}")
        else:
            logger.info("Running %s (phase %d)", module_id, entry.phase)
            receipt = procedure(runtime)
        report.receipts.append(receipt)

        if receipt.failed:
            if state is not None:
                state.mark_failed(module_id)
            if entry.optional:
                warning = f"Optional module {module_id} failed: {receipt.error}"
                runtime.log_warn(warning)
                report.warnings.append(warning)
            else:
                report.failure = ModuleFailure(
                    module_id=module_id,
                    reason=receipt.error or "failed",
                    details={"phase": str(entry.phase)},
                )
                runtime.log_error(f"Required module {module_id} failed; stopping.")
        elif state is not None and not runtime.dry_run:
            state.mark_completed(module_id)

        if persist:
            save_state(state, state_path)
        if report.failure is not None:
            break

    if persist and report.failure is None:
        clear_state(state_path)

    logger.info(
        "Install %s: %d ok, %d skipped, %d failed",
        report.status, report.succeeded, report.skipped, report.failed,
    )
    return report
