"""
Manifest index model — the data-only artifact emitted by the generator.

The index is what the selection resolver and the introspection commands
read at run time. It carries the manifest's sha256 so a bootstrap can
prove that the index and the manifest came from the same snapshot.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from flywheel.core.errors import ManifestValidationError

logger = logging.getLogger(__name__)

INDEX_FILENAME = "manifest_index.json"


class IndexEntry(BaseModel):
    """Per-module data needed for selection and dispatch."""

    phase: int
    dependencies: list[str] = Field(default_factory=list)
    procedure: str | None = None   # "install_lang:install_lang_bun", None if not generated
    category: str
    tags: list[str] = Field(default_factory=list)
    enabled_by_default: bool = True
    optional: bool = False
    generated: bool = True
    run_as: str = "target_user"
    description: str = ""

    @property
    def procedure_module(self) -> str | None:
        return self.procedure.split(":", 1)[0] if self.procedure else None

    @property
    def procedure_function(self) -> str | None:
        return self.procedure.split(":", 1)[1] if self.procedure else None


class ManifestIndex(BaseModel):
    """id → entry mapping plus the canonical global execution order."""

    manifest_id: str
    manifest_sha256: str
    order: list[str]
    modules: dict[str, IndexEntry]

    def __contains__(self, module_id: object) -> bool:
        return module_id in self.modules

    def entry(self, module_id: str) -> IndexEntry:
        return self.modules[module_id]

    @property
    def phases(self) -> list[int]:
        return sorted({e.phase for e in self.modules.values()})

    @property
    def tags(self) -> set[str]:
        return {t for e in self.modules.values() for t in e.tags}

    @property
    def categories(self) -> set[str]:
        return {e.category for e in self.modules.values()}

    def to_json(self) -> str:
        """Deterministic serialization: sorted keys, trailing newline."""
        return json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_json(cls, text: str) -> ManifestIndex:
        return cls.model_validate(json.loads(text))

    @classmethod
    def load(cls, path: Path) -> ManifestIndex:
        """Load an index file written by the generator.

        Raises:
            ManifestValidationError: If the file is missing or malformed.
        """
        if not path.is_file():
            raise ManifestValidationError(
                f"Manifest index not found: {path}. Run 'flywheel manifest generate'."
            )
        try:
            index = cls.from_json(path.read_text(encoding="utf-8"))
        except (ValueError, TypeError) as e:
            raise ManifestValidationError(f"Invalid manifest index {path}: {e}") from e
        logger.debug("Loaded index %s (%d modules)", path, len(index.modules))
        return index
