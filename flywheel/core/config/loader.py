"""
Manifest loader — reads flywheel.manifest.yaml into domain models.

This is the primary entry point for loading the manifest. It reads the
exact bytes (their sha256 is what the generated index records), parses
YAML, validates against the Pydantic schemas plus every cross-module
rule, and returns the typed manifest together with its dependency graph.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from flywheel.core.errors import ManifestValidationError, ValidationIssue
from flywheel.core.manifest.graph import DependencyGraph
from flywheel.core.manifest.validator import validate_manifest
from flywheel.core.models.manifest import ChecksumRegistry, Manifest

logger = logging.getLogger(__name__)

# Default filenames (relative to the repository root)
MANIFEST_FILE = "flywheel.manifest.yaml"
CHECKSUMS_FILE = "checksums.yaml"


@dataclass
class LoadedManifest:
    """A validated manifest plus everything derived from its bytes."""

    manifest: Manifest
    raw_bytes: bytes
    sha256: str
    graph: DependencyGraph
    path: Path | None = None
    warnings: list[ValidationIssue] = field(default_factory=list)


def compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def find_manifest_file(start_dir: Path | None = None) -> Path | None:
    """Search for flywheel.manifest.yaml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to the manifest, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / MANIFEST_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def parse_yaml(raw: bytes | str, source: str) -> Any:
    """Decode YAML, mapping syntax errors onto ManifestValidationError."""
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ManifestValidationError(f"Invalid YAML in {source}: {e}") from e


def load_manifest_bytes(
    raw: bytes,
    checksums: ChecksumRegistry | None = None,
    *,
    strict: bool = False,
    source: str = MANIFEST_FILE,
) -> LoadedManifest:
    """Validate manifest bytes and build the dependency graph.

    Raises:
        ManifestValidationError: Every issue found, collected in one pass.
    """
    data = parse_yaml(raw, source)
    result = validate_manifest(data, checksums, strict=strict)
    if not result.valid:
        raise ManifestValidationError(result.errors)
    for warning in result.warnings:
        logger.warning("Manifest lint: %s", warning)

    manifest = result.manifest
    if manifest is None:
        raise ManifestValidationError(f"{source}: manifest did not parse")
    return LoadedManifest(
        manifest=manifest,
        raw_bytes=raw,
        sha256=compute_sha256(raw),
        graph=DependencyGraph.build(manifest.modules),
        warnings=result.warnings,
    )


def load_manifest(
    path: Path | None = None,
    checksums: ChecksumRegistry | None = None,
    *,
    strict: bool = False,
) -> LoadedManifest:
    """Load and validate the manifest.

    Args:
        path: Explicit path to the manifest. If None, searches upward.
        checksums: Registry used for the checksum coverage rule.
        strict: Treat lint warnings as errors.

    Returns:
        LoadedManifest with the typed manifest, its sha256 and graph.

    Raises:
        ManifestValidationError: If the file is missing or invalid.
    """
    if path is None:
        path = find_manifest_file()

    if path is None:
        raise ManifestValidationError(
            f"No {MANIFEST_FILE} found. Run from the repository root, or pass --manifest."
        )

    if not path.is_file():
        raise ManifestValidationError(f"Manifest file not found: {path}")

    logger.debug("Loading manifest from %s", path)

    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ManifestValidationError(f"Cannot read {path}: {e}") from e

    loaded = load_manifest_bytes(raw, checksums, strict=strict, source=str(path))
    loaded.path = path
    logger.info(
        "Loaded manifest '%s' with %d modules (sha256 %s)",
        loaded.manifest.id, len(loaded.manifest.modules), loaded.sha256[:12],
    )
    return loaded


def load_checksums(path: Path) -> ChecksumRegistry:
    """Load the verified-installer checksum registry.

    A missing file yields an empty registry; the coverage rule then
    reports every verified installer that needs an entry.

    Raises:
        ManifestValidationError: If the file is malformed.
    """
    if not path.is_file():
        logger.debug("No checksum registry at %s", path)
        return ChecksumRegistry()

    data = parse_yaml(path.read_bytes(), str(path))
    if data is None:
        return ChecksumRegistry()
    if not isinstance(data, dict):
        raise ManifestValidationError(
            f"Expected a YAML mapping in {path}, got {type(data).__name__}"
        )

    try:
        registry = ChecksumRegistry.model_validate({"installers": data.get("installers") or {}})
    except ValidationError as e:
        raise ManifestValidationError([
            ValidationIssue(
                path="installers." + ".".join(str(p) for p in err["loc"][1:]),
                message=err["msg"],
                rule="checksum_registry",
            )
            for err in e.errors()
        ]) from e

    logger.debug("Loaded %d checksum entries from %s", len(registry.installers), path)
    return registry


def repo_root(manifest_path: Path) -> Path:
    """Get the repository root directory from a manifest path."""
    return manifest_path.parent.resolve()
