"""
Generators — produce the checked-in artifacts from the manifest.

``generate_artifacts()`` is a pure function of the manifest bytes: it
validates first and returns nothing on failure, so partial output is
impossible. Writing and drift detection are separate steps.

Artifacts (relative to the output directory, normally ``generated/``):

    install_<category>.py   procedures + PROCEDURES table
    manifest_index.json     id → entry, canonical order, manifest sha256
    doctor_checks.json      verify commands as health checks
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from flywheel.core.config.loader import load_manifest_bytes
from flywheel.core.generators import doctor, index, procedures
from flywheel.core.models.manifest import ChecksumRegistry
from flywheel.core.models.template import GeneratedFile

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = "generated"

# Stale artifacts of this shape are removed on write
_PROCEDURE_GLOB = "install_*.py"


def generate_artifacts(
    manifest_bytes: bytes,
    checksums: ChecksumRegistry | None = None,
    *,
    strict: bool = False,
) -> list[GeneratedFile]:
    """Validate the manifest and render every artifact in memory.

    Raises:
        ManifestValidationError: Nothing is generated.
    """
    loaded = load_manifest_bytes(manifest_bytes, checksums, strict=strict)
    graph = loaded.graph
    ordered = [graph.module(mid) for mid in graph.canonical_order()]

    manifest_index = index.build_index(loaded.manifest, graph, loaded.sha256)
    files = procedures.generate(ordered, loaded.sha256)
    files.append(index.generate(manifest_index))
    files.append(doctor.generate(ordered, loaded.sha256))

    logger.info(
        "Generated %d artifacts for %d modules (sha256 %s)",
        len(files), len(ordered), loaded.sha256[:12],
    )
    return files


def diff_artifacts(files: list[GeneratedFile], output_dir: Path) -> dict[str, str]:
    """Compare rendered artifacts with what is on disk.

    Returns:
        path → "new" | "changed" | "unchanged" | "stale"
    """
    status: dict[str, str] = {}
    for f in files:
        target = output_dir / f.path
        if not target.is_file():
            status[f.path] = "new"
        elif target.read_text(encoding="utf-8") != f.content:
            status[f.path] = "changed"
        else:
            status[f.path] = "unchanged"

    for name in _stale_procedure_files(files, output_dir):
        status[name] = "stale"
    return status


def has_drift(status: dict[str, str]) -> bool:
    return any(s != "unchanged" for s in status.values())


def write_artifacts(files: list[GeneratedFile], output_dir: Path) -> list[Path]:
    """Write each artifact atomically and drop stale procedure modules.

    Returns:
        Paths that were written or removed.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    touched: list[Path] = []

    for f in files:
        target = output_dir / f.path
        if target.is_file() and target.read_text(encoding="utf-8") == f.content:
            continue
        _atomic_write(target, f.content, f.mode)
        touched.append(target)
        logger.debug("Wrote %s (%s)", target, f.reason)

    for name in _stale_procedure_files(files, output_dir):
        stale = output_dir / name
        stale.unlink()
        touched.append(stale)
        logger.info("Removed stale artifact %s", stale)

    return touched


def _stale_procedure_files(files: list[GeneratedFile], output_dir: Path) -> list[str]:
    if not output_dir.is_dir():
        return []
    expected = {f.path for f in files}
    return sorted(p.name for p in output_dir.glob(_PROCEDURE_GLOB) if p.name not in expected)


def _atomic_write(path: Path, content: str, mode: int) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".gen_", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise
