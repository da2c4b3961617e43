"""
Domain models — Pydantic types for the provisioner.

All models are re-exported here for convenient access:

    from flywheel.core.models import Manifest, Module, ManifestIndex, SelectionPlan
"""

from flywheel.core.models.action import Receipt
from flywheel.core.models.index import IndexEntry, ManifestIndex
from flywheel.core.models.manifest import (
    ChecksumEntry,
    ChecksumRegistry,
    Manifest,
    ManifestDefaults,
)
from flywheel.core.models.module import (
    InstalledCheck,
    Module,
    Script,
    VerifiedInstaller,
    VerifyCheck,
)
from flywheel.core.models.plan import SelectionPlan, SelectionRequest
from flywheel.core.models.template import GeneratedFile

__all__ = [
    "ChecksumEntry",
    "ChecksumRegistry",
    "GeneratedFile",
    "IndexEntry",
    "InstalledCheck",
    "Manifest",
    "ManifestDefaults",
    "ManifestIndex",
    "Module",
    "Receipt",
    "Script",
    "SelectionPlan",
    "SelectionRequest",
    "VerifiedInstaller",
    "VerifyCheck",
]
