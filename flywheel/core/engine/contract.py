"""
Runtime contract — what a generated procedure needs before it may act.

Checked at call time, at the top of every generated procedure, never at
import time: generated modules stay importable and inspectable with no
environment at all.

Bindings must be present and non-empty; primitives must be callable.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from flywheel.core.errors import ContractViolation

REQUIRED_BINDINGS: tuple[str, ...] = ("target_user", "target_home", "dry_run", "plan")

REQUIRED_PRIMITIVES: tuple[str, ...] = (
    "run_as",
    "log_step",
    "log_info",
    "log_warn",
    "log_error",
    "log_success",
)

# Procedures with an installed_check gate
INSTALLED_CHECK_PRIMITIVES: tuple[str, ...] = ("installed",)

# Only procedures backed by a verified installer need this one
VERIFIED_INSTALLER_PRIMITIVES: tuple[str, ...] = ("run_verified_installer",)


def validate_contract(
    runtime: Any,
    *,
    bindings: Iterable[str] = REQUIRED_BINDINGS,
    primitives: Iterable[str] = REQUIRED_PRIMITIVES,
) -> list[str]:
    """Return every missing binding and primitive, bindings first."""
    missing: list[str] = []
    if runtime is None:
        return [*bindings, *primitives]

    for name in bindings:
        value = getattr(runtime, name, None)
        if value is None or value == "":
            missing.append(name)
            continue
        if name == "dry_run" and not isinstance(value, bool):
            missing.append(name)
        elif name == "plan" and not callable(getattr(value, "should_run", None)):
            missing.append(name)

    for name in primitives:
        if not callable(getattr(runtime, name, None)):
            missing.append(f"{name}()")
    return missing


def require_contract(
    runtime: Any,
    caller: str,
    *,
    installed_check: bool = False,
    verified_installer: bool = False,
) -> None:
    """Raise before any side effect if the runtime is incomplete.

    Raises:
        ContractViolation: Naming every missing binding and primitive.
    """
    primitives = REQUIRED_PRIMITIVES
    if installed_check:
        primitives = primitives + INSTALLED_CHECK_PRIMITIVES
    if verified_installer:
        primitives = primitives + VERIFIED_INSTALLER_PRIMITIVES
    missing = validate_contract(runtime, primitives=primitives)
    if missing:
        raise ContractViolation(caller, missing)
