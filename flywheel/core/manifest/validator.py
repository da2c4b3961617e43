"""
Manifest validator — schema and cross-module rules, checked eagerly.

Validation runs once, before any graph or code work. Every issue is
collected so a manifest author sees all problems in one pass; callers
that need a hard stop use ``parse_manifest`` which raises
``ManifestValidationError`` with the complete list.

Rules:
    schema               pydantic Module / Manifest models
    id_grammar           dotted lowercase ids
    duplicate_id         ids are globally unique
    missing_content      generated modules need an installer or steps, and verify
    dangling_dependency  dependencies must exist          (graph.py)
    forward_phase_dependency                              (graph.py)
    cycle                                                 (graph.py)
    duplicate_procedure  derived procedure names are unique
    reserved_procedure   derived names must not shadow orchestrator names
    checksum_coverage    every verified installer has a checksum entry

Lint (warnings only, never changes generated output):
    prose_install        install steps that read like descriptions
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from flywheel.core.errors import ManifestValidationError, ValidationIssue
from flywheel.core.manifest.graph import find_graph_issues
from flywheel.core.models.manifest import ChecksumRegistry, Manifest
from flywheel.core.models.module import Module, procedure_name_for

logger = logging.getLogger(__name__)

# Names the generated category modules define themselves
RESERVED_PROCEDURE_NAMES: frozenset[str] = frozenset({"install_all"})


@dataclass
class ValidationResult:
    """Outcome of validating a manifest document."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    manifest: Manifest | None = None

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [
                {"path": i.path, "rule": i.rule, "message": i.message, "module_ids": list(i.module_ids)}
                for i in self.errors
            ],
            "warnings": [{"path": i.path, "rule": i.rule, "message": i.message} for i in self.warnings],
            "modules": len(self.manifest.modules) if self.manifest else 0,
        }


def validate_manifest(
    data: Any,
    checksums: ChecksumRegistry | None = None,
    *,
    strict: bool = False,
) -> ValidationResult:
    """Validate a parsed manifest document without raising.

    Args:
        data: The YAML-decoded manifest.
        checksums: Optional checksum registry for coverage checks.
        strict: Promote lint warnings to errors.

    Returns:
        ValidationResult; ``manifest`` is set only when valid.
    """
    result = ValidationResult()

    if not isinstance(data, dict):
        result.errors.append(ValidationIssue(
            path="", rule="schema",
            message=f"Expected a YAML mapping, got {type(data).__name__}",
        ))
        return result

    raw_modules = data.get("modules")
    if not isinstance(raw_modules, list) or not raw_modules:
        result.errors.append(ValidationIssue(
            path="modules", rule="schema", message="At least one module required",
        ))
        return result

    # ── Per-module schema ───────────────────────────────────────
    modules: list[Module] = []
    for position, raw in enumerate(raw_modules):
        module = _parse_module(raw, position, result.errors)
        if module is not None:
            modules.append(module)

    result.errors.extend(_duplicate_ids(modules))

    # ── Header ──────────────────────────────────────────────────
    manifest: Manifest | None = None
    header = {k: v for k, v in data.items() if k != "modules"}
    try:
        manifest = Manifest.model_validate({**header, "modules": modules or raw_modules})
    except ValidationError as e:
        for err in e.errors():
            loc = ".".join(str(p) for p in err["loc"])
            if loc.startswith("modules."):
                continue  # already reported per module
            result.errors.append(ValidationIssue(path=loc, rule="schema", message=err["msg"]))

    # Cross-module checks only make sense once every module parsed
    if len(modules) == len(raw_modules) and not result.errors:
        result.errors.extend(find_graph_issues(modules))
        result.errors.extend(find_procedure_name_collisions(modules))
        if checksums is not None:
            result.errors.extend(find_missing_checksums(modules, checksums))

    for module in modules:
        result.warnings.extend(lint_module(module))
    if strict and result.warnings:
        result.errors.extend(result.warnings)

    if result.valid:
        result.manifest = manifest
    else:
        logger.debug("Manifest invalid: %d errors", len(result.errors))
    return result


def parse_manifest(
    data: Any,
    checksums: ChecksumRegistry | None = None,
    *,
    strict: bool = False,
) -> Manifest:
    """Validate and return the typed manifest.

    Raises:
        ManifestValidationError: Naming every offending id and rule.
    """
    result = validate_manifest(data, checksums, strict=strict)
    if not result.valid:
        raise ManifestValidationError(result.errors)
    for warning in result.warnings:
        logger.warning("Manifest lint: %s", warning)
    if result.manifest is None:
        raise ManifestValidationError("manifest did not parse")
    return result.manifest


# ── Rules ───────────────────────────────────────────────────────


def _parse_module(raw: Any, position: int, errors: list[ValidationIssue]) -> Module | None:
    label = raw.get("id") if isinstance(raw, dict) and raw.get("id") else f"#{position}"
    if not isinstance(raw, dict):
        errors.append(ValidationIssue(
            path=f"modules.{label}", rule="schema", message="Module must be a mapping",
        ))
        return None
    try:
        return Module.model_validate(raw)
    except ValidationError as e:
        for err in e.errors():
            loc = [str(p) for p in err["loc"]]
            if loc and loc[0] == "id":
                rule = "id_grammar"
            elif not loc:
                rule = "missing_content"
            else:
                rule = "schema"
            errors.append(ValidationIssue(
                path=".".join(["modules", str(label), *loc]),
                message=err["msg"],
                rule=rule,
                module_ids=(str(label),),
            ))
        return None


def _duplicate_ids(modules: list[Module]) -> list[ValidationIssue]:
    seen: set[str] = set()
    issues: list[ValidationIssue] = []
    for module in modules:
        if module.id in seen:
            issues.append(ValidationIssue(
                path="modules", rule="duplicate_id",
                message=f"Duplicate module ID: {module.id}",
                module_ids=(module.id,),
            ))
        seen.add(module.id)
    return issues


def find_procedure_name_collisions(modules: list[Module]) -> list[ValidationIssue]:
    """Derived procedure names must be unique and not shadow reserved names.

    "a.b_c" and "a_b.c" both derive ``install_a_b_c``. Each category module
    also defines ``install_<category>`` to run its members in order.
    """
    reserved = set(RESERVED_PROCEDURE_NAMES)
    reserved.update(f"install_{m.effective_category}" for m in modules)

    issues: list[ValidationIssue] = []
    owners: dict[str, str] = {}
    for module in modules:
        if not module.generated:
            continue
        name = procedure_name_for(module.id)
        if name in owners:
            issues.append(ValidationIssue(
                path=f"modules.{module.id}",
                rule="duplicate_procedure",
                message=f"Derived procedure name {name} collides with module {owners[name]}",
                module_ids=(owners[name], module.id),
            ))
            continue
        owners[name] = module.id
        if name in reserved:
            issues.append(ValidationIssue(
                path=f"modules.{module.id}",
                rule="reserved_procedure",
                message=f"Derived procedure name {name} is reserved by the orchestrator",
                module_ids=(module.id,),
            ))
    return issues


def find_missing_checksums(modules: list[Module], checksums: ChecksumRegistry) -> list[ValidationIssue]:
    """Fail closed: a verified installer without a checksum cannot be generated."""
    issues: list[ValidationIssue] = []
    for module in modules:
        vi = module.verified_installer
        if vi is None:
            continue
        if checksums.get(vi.tool) is None:
            issues.append(ValidationIssue(
                path=f"modules.{module.id}.verified_installer",
                rule="checksum_coverage",
                message=(
                    f"checksums.yaml has no entry for installer '{vi.tool}'. "
                    "Add its url and sha256 before regenerating."
                ),
                module_ids=(module.id,),
            ))
    return issues


def _looks_like_prose(step: str) -> bool:
    return step.startswith('"') or "Ensure" in step or "Install " in step


def lint_module(module: Module) -> list[ValidationIssue]:
    """Non-binding heuristics. Never affects generated output."""
    if not module.install:
        return []
    if all(_looks_like_prose(step.body) for step in module.install):
        return [ValidationIssue(
            path=f"modules.{module.id}.install",
            rule="prose_install",
            message="Install commands appear to be descriptions, not actual commands",
            module_ids=(module.id,),
        )]
    return []
