"""
Script runner base — the contract between the runtime and process execution.

The runtime only talks to a ScriptRunner, never to subprocess directly.
Every script travels whole, on stdin, to one interpreter process running
under the requested identity. Upstream installers travel as raw bytes,
exactly as verified; ``script`` then only describes them for logs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel, Field

from flywheel.core.models.action import Receipt
from flywheel.core.models.module import RunAs, Script


class ScriptRequest(BaseModel):
    """Everything a runner needs to execute one script."""

    module_id: str
    identity: RunAs = "target_user"
    script: Script
    target_user: str
    target_home: str
    interpreter: Literal["bash", "sh"] = "bash"
    args: list[str] = Field(default_factory=list)
    # Prepend "set -euo pipefail" and the tool PATH; off for upstream installers
    strict: bool = True
    # Exact bytes to run instead of script.body (upstream installers)
    raw: bytes | None = None
    timeout: float = 1800.0


class ScriptRunner(ABC):
    """Abstract base class for script runners.

    Runners perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Runner identifier (e.g. 'shell', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the interpreters this runner needs exist. Never raises."""

    def validate(self, request: ScriptRequest) -> tuple[bool, str]:
        """Check a request before running it.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        payload = request.raw if request.raw is not None else request.script.body
        if not payload.strip():
            return False, "Empty script"
        if request.identity == "target_user" and not request.target_user:
            return False, "No target user bound"
        return True, ""

    @abstractmethod
    def execute(self, request: ScriptRequest) -> Receipt:
        """Run the script and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """

    def run(self, request: ScriptRequest) -> Receipt:
        """Validate, then execute."""
        ok, error = self.validate(request)
        if not ok:
            return Receipt.failure(request.module_id, error)
        return self.execute(request)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
