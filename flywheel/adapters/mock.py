"""
Mock script runner — universal test double for process execution.

Returns success for everything by default. Failures can be configured
per module id, or per script by a substring of its body.
"""

from __future__ import annotations

from flywheel.adapters.base import ScriptRequest, ScriptRunner
from flywheel.core.models.action import Receipt


class MockScriptRunner(ScriptRunner):
    """Records every request; never touches the system."""

    def __init__(self, available: bool = True, default_output: str = "[mock] executed"):
        self._available = available
        self._default_output = default_output
        self._failing_modules: dict[str, str] = {}
        self._failing_scripts: dict[str, str] = {}
        self._call_log: list[ScriptRequest] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_log(self) -> list[ScriptRequest]:
        """All requests this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls_for(self, module_id: str) -> list[ScriptRequest]:
        return [r for r in self._call_log if r.module_id == module_id]

    def scripts_for(self, module_id: str) -> list[str]:
        return [r.script.body for r in self.calls_for(module_id)]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, module_id: str, error: str = "Mock failure") -> None:
        """Fail every script run for a module."""
        self._failing_modules[module_id] = error

    def fail_when(self, fragment: str, error: str = "Mock failure") -> None:
        """Fail any script whose body contains ``fragment``."""
        self._failing_scripts[fragment] = error

    def execute(self, request: ScriptRequest) -> Receipt:
        self._call_log.append(request)

        if request.module_id in self._failing_modules:
            return Receipt.failure(request.module_id, self._failing_modules[request.module_id])
        for fragment, error in self._failing_scripts.items():
            if fragment in request.script.body:
                return Receipt.failure(request.module_id, error)

        return Receipt.success(
            request.module_id,
            output=self._default_output,
            metadata={"mock": True, "identity": request.identity},
        )

    def reset(self) -> None:
        """Clear call log and configured failures."""
        self._call_log.clear()
        self._failing_modules.clear()
        self._failing_scripts.clear()
