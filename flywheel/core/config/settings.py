"""
Runtime settings — environment-derived defaults for every entrypoint.

Precedence, highest first:
    CLI option  >  environment variable  >  field default

The CLI builds ``Settings.from_env()`` once and then applies explicit
options with ``settings.override(...)``.
"""

from __future__ import annotations

import getpass
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flywheel.core.errors import FlywheelError

logger = logging.getLogger(__name__)

# env var → field name
_ENV_FIELDS: dict[str, str] = {
    "FLYWHEEL_REPO_OWNER": "repo_owner",
    "FLYWHEEL_REPO_NAME": "repo_name",
    "FLYWHEEL_REF": "ref",
    "FLYWHEEL_FETCH_TIMEOUT": "fetch_timeout",
    "FLYWHEEL_FETCH_RETRIES": "fetch_retries",
    "FLYWHEEL_COMMAND_TIMEOUT": "command_timeout",
    "FLYWHEEL_CHECK_TIMEOUT": "check_timeout",
    "FLYWHEEL_KEEP_BOOTSTRAP": "keep_bootstrap",
    "FLYWHEEL_STATE_FILE": "state_file",
    "TARGET_USER": "target_user",
    "TARGET_HOME": "target_home",
}


class Settings(BaseModel):
    """Typed view of the provisioner's environment."""

    model_config = ConfigDict(frozen=True)

    # ── Bootstrap source ─────────────────────────────────────────
    repo_owner: str = "flywheel-dev"
    repo_name: str = "flywheel"
    ref: str = "main"
    fetch_timeout: float = Field(default=60.0, gt=0)
    fetch_retries: int = Field(default=3, ge=1)
    keep_bootstrap: bool = False

    # ── Execution ────────────────────────────────────────────────
    command_timeout: float = Field(default=1800.0, gt=0)
    check_timeout: float = Field(default=60.0, gt=0)
    target_user: str = "ubuntu"
    target_home: str | None = None
    state_file: Path | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables.

        Raises:
            FlywheelError: If a variable holds an unusable value.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for var, name in _ENV_FIELDS.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            values[name] = _coerce_bool(raw) if name == "keep_bootstrap" else raw

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            fields = ", ".join(
                f"{_env_name(str(err['loc'][0]))} ({err['msg']})" for err in e.errors()
            )
            raise FlywheelError(f"Invalid environment configuration: {fields}") from e

    def override(self, **options: Any) -> Settings:
        """Apply explicit CLI options; ``None`` means "not given"."""
        given = {k: v for k, v in options.items() if v is not None}
        if not given:
            return self
        return self.model_validate({**self.model_dump(), **given})

    @property
    def resolved_target_home(self) -> str:
        """TARGET_HOME, or the conventional home of the target user."""
        if self.target_home:
            return self.target_home
        if self.target_user == "root":
            return "/root"
        return f"/home/{self.target_user}"

    @property
    def invoking_user(self) -> str:
        return getpass.getuser()


def _coerce_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_name(field_name: str) -> str:
    for var, name in _ENV_FIELDS.items():
        if name == field_name:
            return var
    return field_name
