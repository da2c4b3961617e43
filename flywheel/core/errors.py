"""
Error taxonomy — every fatal condition the engine can surface.

Validation and selection errors are raised before any side effect.
Contract and bootstrap errors abort the current invocation. Adapters
never raise; their failures travel as failed Receipts instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class FlywheelError(Exception):
    """Base class for all engine errors (CLI maps these to exit 1)."""


# ── Manifest ────────────────────────────────────────────────────


@dataclass(frozen=True)
class ValidationIssue:
    """A single rule violation found in the manifest."""

    path: str                   # e.g. "modules.lang.bun.dependencies"
    message: str
    rule: str = ""              # id_grammar, dangling_dependency, cycle, ...
    module_ids: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class ManifestValidationError(FlywheelError):
    """The manifest (or checksum registry) violates a schema or graph rule.

    Fatal at generation time: no artifacts are emitted.
    """

    def __init__(self, issues: list[ValidationIssue] | str):
        if isinstance(issues, str):
            issues = [ValidationIssue(path="", message=issues)]
        self.issues: list[ValidationIssue] = list(issues)
        super().__init__(self._format())

    def _format(self) -> str:
        if len(self.issues) == 1:
            return f"Manifest validation failed: {self.issues[0]}"
        lines = [f"Manifest validation failed ({len(self.issues)} issues):"]
        lines.extend(f"  - {issue}" for issue in self.issues)
        return "\n".join(lines)

    @property
    def module_ids(self) -> list[str]:
        """All offending module ids, in first-seen order."""
        seen: dict[str, None] = {}
        for issue in self.issues:
            for mid in issue.module_ids:
                seen.setdefault(mid, None)
        return list(seen)


# ── Selection ───────────────────────────────────────────────────


class SelectionError(FlywheelError):
    """Filters reference unknown targets or skip a required dependency."""

    def __init__(self, message: str, module_ids: tuple[str, ...] = ()):
        self.module_ids = module_ids
        super().__init__(message)


# ── Runtime ─────────────────────────────────────────────────────


class ContractViolation(FlywheelError):
    """A generated procedure was invoked without its required environment."""

    def __init__(self, caller: str, missing: list[str]):
        self.caller = caller
        self.missing = list(missing)
        super().__init__(
            f"Contract violation in {caller}: missing {', '.join(self.missing)}. "
            "Construct a Runtime with these bindings and primitives "
            "before invoking generated procedures."
        )


@dataclass
class ModuleFailure:
    """Details of a required module that failed during orchestration."""

    module_id: str
    reason: str
    details: dict[str, str] = field(default_factory=dict)


class ModuleExecutionError(FlywheelError):
    """A required module failed; orchestration stops here."""

    def __init__(self, failure: ModuleFailure):
        self.failure = failure
        super().__init__(f"Module {failure.module_id} failed: {failure.reason}")


# ── Bootstrap ───────────────────────────────────────────────────


DEFAULT_BOOTSTRAP_REMEDY = (
    "Retry, or pin FLYWHEEL_REF to a known-good tag or commit sha."
)


class BootstrapError(FlywheelError):
    """The fetched snapshot cannot be trusted; nothing was loaded."""

    def __init__(self, message: str, remedy: str = DEFAULT_BOOTSTRAP_REMEDY):
        self.remedy = remedy
        super().__init__(f"{message}\n  Fix: {remedy}")
