"""
Manifest model — the root document (flywheel.manifest.yaml).
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from flywheel.core.models.module import Module

_MANIFEST_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

# Placeholder in checksums.yaml for an installer nobody has reviewed yet
UNPINNED_SHA256 = "0" * 64


class ManifestDefaults(BaseModel):
    """Default installation settings declared by the manifest."""

    user: str = Field(default="ubuntu", min_length=1)
    workspace_root: str = Field(default="/data/projects", min_length=1)
    mode: Literal["vibe", "safe"] = "vibe"


class Manifest(BaseModel):
    """A validated manifest: header fields plus modules in authored order."""

    version: int = Field(default=1, gt=0)
    name: str = Field(min_length=1)
    id: str
    defaults: ManifestDefaults = Field(default_factory=ManifestDefaults)
    modules: list[Module] = Field(min_length=1)

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not _MANIFEST_ID_PATTERN.match(value):
            raise ValueError("manifest id must be lowercase alphanumeric with underscores")
        return value

    def get_module(self, module_id: str) -> Module | None:
        for module in self.modules:
            if module.id == module_id:
                return module
        return None

    @property
    def module_ids(self) -> list[str]:
        return [m.id for m in self.modules]

    @property
    def categories(self) -> list[str]:
        """Categories in first-appearance order."""
        return list(dict.fromkeys(m.effective_category for m in self.modules))


class ChecksumEntry(BaseModel):
    """One verified-installer entry: where to fetch it and what it hashes to."""

    url: str
    sha256: str

    @field_validator("url")
    @classmethod
    def _https_only(cls, value: str) -> str:
        if not value.startswith("https://"):
            raise ValueError("installer url must be https://")
        return value

    @field_validator("sha256")
    @classmethod
    def _hex_digest(cls, value: str) -> str:
        value = value.strip().lower()
        if not re.fullmatch(r"[0-9a-f]{64}", value):
            raise ValueError("sha256 must be 64 hex characters")
        return value

    @property
    def pinned(self) -> bool:
        """False for the all-zero placeholder hash."""
        return self.sha256 != UNPINNED_SHA256


class ChecksumRegistry(BaseModel):
    """checksums.yaml — verified installer key → {url, sha256}."""

    installers: dict[str, ChecksumEntry] = Field(default_factory=dict)

    def get(self, tool: str) -> ChecksumEntry | None:
        return self.installers.get(tool)
