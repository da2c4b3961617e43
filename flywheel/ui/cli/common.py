"""
Shared CLI helpers — settings resolution and error rendering.
"""

from __future__ import annotations

import sys
from typing import Any

import click

from flywheel.core.config.settings import Settings
from flywheel.core.errors import FlywheelError


def load_settings(ctx: click.Context, **overrides: Any) -> Settings:
    """Settings from the environment, with explicit CLI options applied."""
    try:
        settings = Settings.from_env().override(**overrides)
    except (FlywheelError, ValueError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    ctx.obj["settings"] = settings
    return settings


def split_values(values: tuple[str, ...]) -> tuple[str, ...]:
    """Accept both repeated flags and comma lists: --only a --only b,c."""
    out: list[str] = []
    for value in values:
        out.extend(v.strip() for v in value.split(",") if v.strip())
    return tuple(out)


def fail(message: str, ids: list[str] | None = None) -> None:
    """Print an error (and the offending ids) in red, exit 1."""
    click.secho(f"❌ {message}", fg="red")
    if ids:
        click.secho(f"   Offending: {', '.join(ids)}", fg="red")
    sys.exit(1)
