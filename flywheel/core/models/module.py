"""
Module model — the declarative unit of installable capability.

Modules are authored only in flywheel.manifest.yaml. Everything else
(the graph, the index, the generated procedures) is derived from them.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Dotted, lowercase ids: "base.system", "lang.bun", "cloud.wrangler"
MODULE_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")

# A verify command ending in "|| true" is advisory, not fatal
_OPTIONAL_VERIFY = re.compile(r"\s*\|\|\s*true\s*(#.*)?$")

RunAs = Literal["target_user", "root", "current"]
RUN_AS_VALUES: tuple[str, ...] = ("target_user", "root", "current")

# Only known shell interpreters may consume a verified installer
ALLOWED_RUNNERS: frozenset[str] = frozenset({"bash", "sh"})


def procedure_name_for(module_id: str) -> str:
    """Derive the generated procedure name for a module id."""
    return "install_" + module_id.replace(".", "_")


class Script(BaseModel):
    """A shell payload: either a one-line command or a multi-line body.

    Scripts are always handed to the run-as primitive whole, on stdin.
    They are never spliced into another shell string.
    """

    model_config = ConfigDict(frozen=True)

    body: str

    @classmethod
    def coerce(cls, value: Any) -> Any:
        if isinstance(value, str):
            text = value
            # YAML literal blocks sometimes arrive with the "|" marker kept
            if text.startswith("|"):
                text = text[1:]
            return {"body": text.strip("\n").rstrip()}
        return value

    @property
    def lines(self) -> list[str]:
        return self.body.splitlines()

    @property
    def is_multiline(self) -> bool:
        return "\n" in self.body

    @property
    def summary(self) -> str:
        """First non-empty line, used in logs and dry-run narration."""
        for line in self.lines:
            if line.strip():
                return line.strip()
        return ""


class VerifyCheck(BaseModel):
    """A post-install check. Optional checks only warn on failure."""

    model_config = ConfigDict(frozen=True)

    script: Script
    optional: bool = False

    @classmethod
    def parse(cls, value: Any) -> Any:
        if isinstance(value, str):
            optional = bool(_OPTIONAL_VERIFY.search(value))
            command = _OPTIONAL_VERIFY.sub("", value) if optional else value
            return {"script": Script.coerce(command), "optional": optional}
        return value

    @property
    def summary(self) -> str:
        return self.script.summary


class InstalledCheck(BaseModel):
    """Fast skip-if-present gate, run under its own identity."""

    model_config = ConfigDict(frozen=True)

    run_as: RunAs = "target_user"
    command: str = Field(min_length=1)


class VerifiedInstaller(BaseModel):
    """Reference to an upstream installer script listed in checksums.yaml."""

    model_config = ConfigDict(frozen=True)

    tool: str = Field(min_length=1)   # key in the checksum registry
    runner: Literal["bash", "sh"]
    args: list[str] = Field(default_factory=list)
    fallback_url: str | None = None   # direct install if verification fails

    @field_validator("fallback_url")
    @classmethod
    def _https_only(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith("https://"):
            raise ValueError("fallback_url must be an https:// URL")
        return value


class Module(BaseModel):
    """A single manifest module.

    Schema rules that only need the module itself are enforced here.
    Cross-module rules (dependencies, phases, cycles, name collisions)
    live in the manifest validator and the dependency graph.
    """

    model_config = ConfigDict(frozen=True)

    # ── Identity ─────────────────────────────────────────────────
    id: str
    description: str = Field(min_length=1)
    category: str | None = None
    tags: list[str] = Field(default_factory=list)

    # ── Ordering & selection ─────────────────────────────────────
    phase: int = Field(default=1, ge=1)
    dependencies: list[str] = Field(default_factory=list)
    enabled_by_default: bool = True
    optional: bool = False
    generated: bool = True

    # ── Execution ────────────────────────────────────────────────
    run_as: RunAs = "target_user"
    installed_check: InstalledCheck | None = None
    verified_installer: VerifiedInstaller | None = None
    install: list[Script] = Field(default_factory=list)
    verify: list[VerifyCheck] = Field(default_factory=list)

    # ── Informational ────────────────────────────────────────────
    notes: list[str] = Field(default_factory=list)
    aliases: list[str] = Field(default_factory=list)
    docs_url: str | None = None

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not MODULE_ID_PATTERN.match(value):
            raise ValueError(
                f"module id {value!r} must be lowercase with dots "
                '(e.g. "shell.zsh", "lang.bun")'
            )
        return value

    @field_validator("install", mode="before")
    @classmethod
    def _coerce_install(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [Script.coerce(v) for v in value]
        return value

    @field_validator("verify", mode="before")
    @classmethod
    def _coerce_verify(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [VerifyCheck.parse(v) for v in value]
        return value

    @field_validator("tags", "dependencies", "notes", "aliases", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @model_validator(mode="after")
    def _check_content(self) -> Module:
        if not self.generated:
            return self
        if self.verified_installer is None and not self.install:
            raise ValueError(
                "module must define verified_installer or install commands "
                "(or set generated: false)"
            )
        if not self.verify:
            raise ValueError("at least one verify command required")
        return self

    # ── Derived ──────────────────────────────────────────────────

    @property
    def effective_category(self) -> str:
        """Declared category, or the first segment of the id."""
        return self.category or self.id.split(".", 1)[0]

    @property
    def procedure_name(self) -> str:
        return procedure_name_for(self.id)

    @property
    def install_script(self) -> Script | None:
        """All install steps joined into one script body."""
        if not self.install:
            return None
        return Script(body="\n".join(step.body for step in self.install))

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags
