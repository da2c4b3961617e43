"""
Selection models — what the user asked for, and what will actually run.

A SelectionPlan is computed once per invocation and never mutated. It is
passed explicitly to the orchestrator and to every generated procedure.
"""

from __future__ import annotations

import hashlib
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SelectionRequest(BaseModel):
    """Filter inputs from the selection CLI surface."""

    model_config = ConfigDict(frozen=True)

    only: tuple[str, ...] = ()
    only_phases: tuple[str, ...] = ()     # numbers or names ("agents", "lang")
    skip: tuple[str, ...] = ()
    skip_tags: tuple[str, ...] = ()
    skip_categories: tuple[str, ...] = ()
    no_deps: bool = False

    @property
    def is_default(self) -> bool:
        return not (
            self.only or self.only_phases or self.skip
            or self.skip_tags or self.skip_categories or self.no_deps
        )

    def with_skips(
        self,
        ids: tuple[str, ...] = (),
        tags: tuple[str, ...] = (),
    ) -> SelectionRequest:
        """Return a copy with extra skip primitives appended (deduplicated)."""
        return self.model_copy(update={
            "skip": tuple(dict.fromkeys(self.skip + ids)),
            "skip_tags": tuple(dict.fromkeys(self.skip_tags + tags)),
        })


class SelectionPlan(BaseModel):
    """The effective plan: membership, order, and why."""

    model_config = ConfigDict(frozen=True)

    manifest_sha256: str = ""
    request: SelectionRequest = Field(default_factory=SelectionRequest)
    order: tuple[str, ...] = ()
    members: frozenset[str] = frozenset()
    reasons: dict[str, str] = Field(default_factory=dict)           # included id → reason
    excluded: dict[str, str] = Field(default_factory=dict)          # excluded id → reason
    unmet_dependencies: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    def should_run(self, module_id: str) -> bool:
        return module_id in self.members

    def __len__(self) -> int:
        return len(self.order)

    @property
    def fingerprint(self) -> str:
        """Stable identity of this plan, used to detect resume drift."""
        payload = self.manifest_sha256 + "\n" + "\n".join(self.order)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, Any]:
        return {
            "manifest_sha256": self.manifest_sha256,
            "fingerprint": self.fingerprint,
            "order": list(self.order),
            "reasons": dict(self.reasons),
            "excluded": dict(sorted(self.excluded.items())),
            "unmet_dependencies": {k: list(v) for k, v in self.unmet_dependencies.items()},
            "warnings": list(self.warnings),
        }
