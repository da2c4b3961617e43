"""
Doctor check generator — every verify command as a standalone health check.

``flywheel doctor`` reads doctor_checks.json and re-runs the checks
without touching install logic.
"""

from __future__ import annotations

import json

from flywheel.core.models.module import Module
from flywheel.core.models.template import GeneratedFile

DOCTOR_FILENAME = "doctor_checks.json"


def build_checks(modules_in_order: list[Module]) -> list[dict]:
    checks: list[dict] = []
    for module in modules_in_order:
        for n, check in enumerate(module.verify, start=1):
            checks.append({
                "id": f"{module.id}.verify.{n}",
                "module": module.id,
                "description": module.description,
                "command": check.script.body,
                "run_as": module.run_as,
                "required": not (check.optional or module.optional),
            })
    return checks


def generate(modules_in_order: list[Module], manifest_sha256: str) -> GeneratedFile:
    payload = {
        "manifest_sha256": manifest_sha256,
        "checks": build_checks(modules_in_order),
    }
    return GeneratedFile(
        path=DOCTOR_FILENAME,
        content=json.dumps(payload, indent=2, sort_keys=True) + "\n",
        reason="Verify commands as doctor checks",
    )
