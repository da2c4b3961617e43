"""
Index generator — the data-only manifest_index.json artifact.
"""

from __future__ import annotations

from flywheel.core.manifest.graph import DependencyGraph
from flywheel.core.models.index import INDEX_FILENAME, IndexEntry, ManifestIndex
from flywheel.core.models.manifest import Manifest
from flywheel.core.models.template import GeneratedFile


def category_module_name(category: str) -> str:
    """Generated module (file stem) holding a category's procedures."""
    return f"install_{category}"


def build_index(manifest: Manifest, graph: DependencyGraph, manifest_sha256: str) -> ManifestIndex:
    """Project a validated manifest onto the index model."""
    modules: dict[str, IndexEntry] = {}
    for module in manifest.modules:
        procedure = None
        if module.generated:
            procedure = f"{category_module_name(module.effective_category)}:{module.procedure_name}"
        modules[module.id] = IndexEntry(
            phase=module.phase,
            dependencies=list(module.dependencies),
            procedure=procedure,
            category=module.effective_category,
            tags=list(module.tags),
            enabled_by_default=module.enabled_by_default,
            optional=module.optional,
            generated=module.generated,
            run_as=module.run_as,
            description=module.description,
        )

    return ManifestIndex(
        manifest_id=manifest.id,
        manifest_sha256=manifest_sha256,
        order=graph.canonical_order(),
        modules=modules,
    )


def generate(index: ManifestIndex) -> GeneratedFile:
    return GeneratedFile(
        path=INDEX_FILENAME,
        content=index.to_json(),
        reason="Module index and canonical order",
    )
