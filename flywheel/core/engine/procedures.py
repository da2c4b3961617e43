"""
Procedure table loader — generated modules → {module id: callable}.

Generated modules are imported from their file paths, not from
``sys.path``, so a bootstrap workspace and a local checkout load the
same way. Each module's PROCEDURES table must cover every index entry
that points at it, and its recorded manifest sha256 must match the
index: anything else means the artifacts are stale.
"""

from __future__ import annotations

import importlib.util
import logging
import re
from collections.abc import Callable
from pathlib import Path
from types import ModuleType

from flywheel.core.errors import ManifestValidationError, ValidationIssue
from flywheel.core.models.index import ManifestIndex

logger = logging.getLogger(__name__)

_SHA_HEADER = re.compile(r"^# manifest sha256: ([0-9a-f]{64})$", re.MULTILINE)

_REGENERATE = "Run 'flywheel manifest generate' and commit the result."


def recorded_sha256(source: str) -> str | None:
    """Manifest hash recorded in a generated module's header."""
    match = _SHA_HEADER.search(source)
    return match.group(1) if match else None


def import_generated(path: Path) -> ModuleType:
    """Import one generated module from its file path."""
    spec = importlib.util.spec_from_file_location(f"flywheel_generated.{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ManifestValidationError(f"Cannot import generated module {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def load_procedures(generated_dir: Path, index: ManifestIndex) -> dict[str, Callable]:
    """Build the id → procedure table for every generated index entry.

    Raises:
        ManifestValidationError: Missing module, missing procedure, or a
            module generated from a different manifest than the index.
    """
    wanted: dict[str, list[str]] = {}
    for module_id in index.order:
        entry = index.entry(module_id)
        if entry.procedure:
            wanted.setdefault(entry.procedure_module, []).append(module_id)

    issues: list[ValidationIssue] = []
    table: dict[str, Callable] = {}

    for stem, module_ids in wanted.items():
        path = generated_dir / f"{stem}.py"
        if not path.is_file():
            issues.append(ValidationIssue(
                path=str(path), rule="missing_artifact",
                message=f"Generated module missing. {_REGENERATE}",
                module_ids=tuple(module_ids),
            ))
            continue

        sha = recorded_sha256(path.read_text(encoding="utf-8"))
        if sha != index.manifest_sha256:
            issues.append(ValidationIssue(
                path=str(path), rule="stale_artifact",
                message=f"Generated from a different manifest than the index. {_REGENERATE}",
                module_ids=tuple(module_ids),
            ))
            continue

        module = import_generated(path)
        procedures = getattr(module, "PROCEDURES", {})
        for module_id in module_ids:
            fn = procedures.get(module_id)
            if fn is None or getattr(module, index.entry(module_id).procedure_function, None) is not fn:
                issues.append(ValidationIssue(
                    path=str(path), rule="missing_procedure",
                    message=f"No procedure {index.entry(module_id).procedure} for {module_id}. {_REGENERATE}",
                    module_ids=(module_id,),
                ))
                continue
            table[module_id] = fn

    if issues:
        raise ManifestValidationError(issues)
    logger.debug("Loaded %d procedures from %s", len(table), generated_dir)
    return table
