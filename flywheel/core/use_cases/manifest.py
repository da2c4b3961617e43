"""
Manifest use cases — validate and generate.

Both read the manifest from disk and never raise: problems come back
on the result object so the CLI can render them (or dump JSON).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from flywheel.core.config.loader import (
    CHECKSUMS_FILE,
    find_manifest_file,
    load_checksums,
    parse_yaml,
)
from flywheel.core.errors import ManifestValidationError, ValidationIssue
from flywheel.core.generators import (
    DEFAULT_OUTPUT_DIR,
    diff_artifacts,
    generate_artifacts,
    has_drift,
    write_artifacts,
)
from flywheel.core.manifest.validator import ValidationResult, validate_manifest
from flywheel.core.models.template import GeneratedFile

logger = logging.getLogger(__name__)


def _locate(manifest_path: Path | None) -> Path:
    path = manifest_path or find_manifest_file()
    if path is None:
        raise ManifestValidationError(
            "No flywheel.manifest.yaml found. Run from the repository root, or pass --manifest."
        )
    if not path.is_file():
        raise ManifestValidationError(f"Manifest file not found: {path}")
    return path


# ── Validate ────────────────────────────────────────────────────


def check_manifest(
    manifest_path: Path | None = None,
    checksums_path: Path | None = None,
    *,
    strict: bool = False,
) -> ValidationResult:
    """Validate without generating; every issue is reported."""
    try:
        path = _locate(manifest_path)
        checksums = load_checksums(checksums_path or path.parent / CHECKSUMS_FILE)
        data = parse_yaml(path.read_bytes(), str(path))
    except ManifestValidationError as e:
        return ValidationResult(errors=list(e.issues))
    return validate_manifest(data, checksums, strict=strict)


# ── Generate ────────────────────────────────────────────────────


@dataclass
class GenerateResult:
    """Outcome of rendering (and possibly writing) the artifacts."""

    output_dir: Path | None = None
    files: list[GeneratedFile] = field(default_factory=list)
    status: dict[str, str] = field(default_factory=dict)   # path → new/changed/unchanged/stale
    written: list[Path] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def drift(self) -> bool:
        return has_drift(self.status)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "output_dir": str(self.output_dir) if self.output_dir else None,
            "files": dict(sorted(self.status.items())),
            "written": [str(p) for p in self.written],
            "drift": self.drift,
            "errors": [str(i) for i in self.issues],
        }


def run_generate(
    manifest_path: Path | None = None,
    checksums_path: Path | None = None,
    output_dir: Path | None = None,
    *,
    check: bool = False,
    dry_run: bool = False,
    strict: bool = False,
) -> GenerateResult:
    """Regenerate artifacts.

    Args:
        check: Compare only; report drift, write nothing.
        dry_run: Render and diff, write nothing.
        strict: Lint warnings fail generation.
    """
    result = GenerateResult()
    try:
        path = _locate(manifest_path)
        checksums = load_checksums(checksums_path or path.parent / CHECKSUMS_FILE)
        result.files = generate_artifacts(path.read_bytes(), checksums, strict=strict)
    except ManifestValidationError as e:
        result.issues = list(e.issues)
        return result

    result.output_dir = output_dir or path.parent / DEFAULT_OUTPUT_DIR
    result.status = diff_artifacts(result.files, result.output_dir)
    if check or dry_run:
        return result

    result.written = write_artifacts(result.files, result.output_dir)
    logger.info("Wrote %d artifact(s) to %s", len(result.written), result.output_dir)
    return result
