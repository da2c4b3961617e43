"""
Install state — atomic read/write of resume progress.

The state records which modules completed under which plan. On resume
the plan is always recomputed first; progress is reused only when the
new plan's fingerprint matches the stored one.
"""

from __future__ import annotations

import json
import logging
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from flywheel.core.models.plan import SelectionPlan

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".flywheel"
DEFAULT_STATE_FILE = "install_state.json"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class InstallState(BaseModel):
    """Progress of one (possibly interrupted) install run."""

    plan_fingerprint: str = ""
    manifest_sha256: str = ""
    completed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    started_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def mark_completed(self, module_id: str) -> None:
        if module_id not in self.completed:
            self.completed.append(module_id)
        if module_id in self.failed:
            self.failed.remove(module_id)

    def mark_failed(self, module_id: str) -> None:
        if module_id not in self.failed:
            self.failed.append(module_id)

    def is_completed(self, module_id: str) -> bool:
        return module_id in self.completed


def default_state_path(target_home: str) -> Path:
    return Path(target_home) / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def load_state(path: Path) -> InstallState | None:
    """Load saved progress, or None when there is nothing usable."""
    if not path.is_file():
        logger.debug("No state file at %s", path)
        return None
    try:
        state = InstallState.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return None
    except ValueError as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return None
    logger.debug("Loaded state from %s (%d completed)", path, len(state.completed))
    return state


def save_state(state: InstallState, path: Path) -> None:
    """Save progress (write to temp file in the same directory, then rename)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(state.model_dump(mode="json"), indent=2) + "\n"

    _fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(_fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s", path)
        raise
    logger.debug("State saved to %s", path)


def reconcile(state: InstallState | None, plan: SelectionPlan) -> tuple[InstallState, str | None]:
    """Match saved progress against a freshly resolved plan.

    Returns:
        (state to continue with, warning or None). A different
        fingerprint discards the old progress and restarts.
    """
    if state is None:
        return InstallState(plan_fingerprint=plan.fingerprint, manifest_sha256=plan.manifest_sha256), None

    if state.plan_fingerprint != plan.fingerprint:
        warning = (
            "Plan changed since the interrupted run "
            f"({len(state.completed)} module(s) were completed under the old plan); "
            "restarting from the beginning."
        )
        return InstallState(plan_fingerprint=plan.fingerprint, manifest_sha256=plan.manifest_sha256), warning

    if state.completed:
        logger.info("Resuming: %d module(s) already completed", len(state.completed))
    state.failed.clear()
    return state, None


def clear_state(path: Path) -> None:
    """Forget saved progress (after a finished run, or --force-reinstall)."""
    if path.is_file():
        path.unlink()
        logger.debug("State cleared at %s", path)
