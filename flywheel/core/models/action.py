"""
Receipt model — the execution contract.

Every generated procedure and every runtime primitive returns a Receipt.
Failures are captured here rather than raised, so the orchestrator can
decide between fail-fast (required module) and continue (optional).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Result of running one module procedure or one primitive."""

    module_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(cls, module_id: str, output: str = "", **kwargs: Any) -> Receipt:
        """Create a success receipt."""
        return cls(module_id=module_id, status="ok", output=output, **kwargs)

    @classmethod
    def failure(cls, module_id: str, error: str, **kwargs: Any) -> Receipt:
        """Create a failure receipt."""
        return cls(module_id=module_id, status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, module_id: str, reason: str = "", **kwargs: Any) -> Receipt:
        """Create a skip receipt."""
        return cls(module_id=module_id, status="skipped", output=reason, **kwargs)
