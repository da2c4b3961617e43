"""
Generated file model — used by all generators.
"""

from __future__ import annotations

from pydantic import BaseModel


class GeneratedFile(BaseModel):
    """A file produced by the generate phase.

    Attributes:
        path:    Path relative to the output directory.
        content: Full file content.
        mode:    File permission bits to apply on write.
        reason:  Why this file was generated.
    """

    path: str
    content: str
    mode: int = 0o644
    reason: str = ""
