"""
Flywheel — CLI entrypoint.

Usage:
    flywheel --help
    flywheel manifest validate
    flywheel manifest generate --check
    flywheel install --only lang.bun --dry-run
    flywheel bootstrap --ref v1.2.0
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from flywheel import __version__
from flywheel.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="flywheel")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """Flywheel — manifest-driven provisioning for developer machines."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None  # FLYWHEEL_LOG_LEVEL or WARNING

    setup_logging(level=level, quiet_third_party=not debug)


@cli.command()
@click.option(
    "--generated-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory with generated artifacts (default: ./generated).",
)
@click.option("--module", "modules", multiple=True, help="Only check these module ids.")
@click.option("--target-user", default=None, help="Account the tools were installed for.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def doctor(
    ctx: click.Context,
    generated_dir: Path | None,
    modules: tuple[str, ...],
    target_user: str | None,
    as_json: bool,
) -> None:
    """Re-run every generated verify check and report health."""
    from flywheel.core.use_cases.doctor import run_doctor
    from flywheel.ui.cli.common import load_settings

    settings = load_settings(ctx, target_user=target_user)
    result = run_doctor(generated_dir or Path.cwd() / "generated", settings, modules=list(modules))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    for check in result.checks:
        if check.passed:
            click.secho(f"   ✅ {check.id}", fg="green")
        elif check.required:
            click.secho(f"   ❌ {check.id}: {check.error or 'failed'}", fg="red")
        else:
            click.secho(f"   ⚠️  {check.id}: {check.error or 'failed'} (optional)", fg="yellow")

    click.echo()
    if result.ok:
        click.secho(f"✅ {len(result.checks)} check(s) healthy", fg="green", bold=True)
    else:
        click.secho(f"❌ {len(result.failed_required)} required check(s) failing", fg="red", bold=True)
        sys.exit(1)


# ── Register sub-command groups from flywheel/ui/cli/ ────────────

from flywheel.ui.cli.manifest import manifest
from flywheel.ui.cli.install import install, bootstrap

cli.add_command(manifest)
cli.add_command(install)
cli.add_command(bootstrap)


if __name__ == "__main__":
    cli()
