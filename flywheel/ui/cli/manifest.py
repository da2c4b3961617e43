"""
CLI commands for the manifest: validate and generate.

Thin wrappers over ``flywheel.core.use_cases.manifest``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

_FILE = click.Path(dir_okay=False, path_type=Path)


@click.group()
def manifest() -> None:
    """Manifest — validate, generate artifacts, detect drift."""


# ── Validate ────────────────────────────────────────────────────


@manifest.command("validate")
@click.option("--manifest", "manifest_path", type=_FILE, default=None,
              help="Path to flywheel.manifest.yaml (default: auto-detect).")
@click.option("--checksums", "checksums_path", type=_FILE, default=None,
              help="Path to checksums.yaml (default: next to the manifest).")
@click.option("--strict", is_flag=True, help="Treat lint warnings as errors.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def validate(
    ctx: click.Context,
    manifest_path: Path | None,
    checksums_path: Path | None,
    strict: bool,
    as_json: bool,
) -> None:
    """Validate the manifest: schema, ids, graph, procedure names."""
    from flywheel.core.use_cases.manifest import check_manifest

    result = check_manifest(manifest_path, checksums_path, strict=strict)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid and result.manifest is not None:
        click.secho("✅ Manifest is valid", fg="green", bold=True)
        click.echo(f"   Manifest: {result.manifest.name} ({result.manifest.id})")
        click.echo(f"   Modules: {len(result.manifest.modules)}")
        click.echo(f"   Categories: {', '.join(result.manifest.categories)}")
    else:
        click.secho("❌ Manifest errors:", fg="red", bold=True)
        for err in result.errors:
            rule = f" [{err.rule}]" if err.rule else ""
            click.echo(f"   • {err}{rule}")

    if result.warnings and not ctx.obj.get("quiet"):
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(1)


# ── Generate ────────────────────────────────────────────────────


@manifest.command("generate")
@click.option("--manifest", "manifest_path", type=_FILE, default=None,
              help="Path to flywheel.manifest.yaml (default: auto-detect).")
@click.option("--checksums", "checksums_path", type=_FILE, default=None,
              help="Path to checksums.yaml (default: next to the manifest).")
@click.option("--output", "output_dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Output directory (default: generated/ next to the manifest).")
@click.option("--check", is_flag=True, help="Exit 1 if artifacts are out of date; write nothing.")
@click.option("--dry-run", is_flag=True, help="Show what would change; write nothing.")
@click.option("--strict", is_flag=True, help="Treat lint warnings as errors.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def generate(
    manifest_path: Path | None,
    checksums_path: Path | None,
    output_dir: Path | None,
    check: bool,
    dry_run: bool,
    strict: bool,
    as_json: bool,
) -> None:
    """Generate install procedures, the index and doctor checks."""
    from flywheel.core.use_cases.manifest import run_generate

    result = run_generate(
        manifest_path, checksums_path, output_dir,
        check=check, dry_run=dry_run, strict=strict,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok and not (check and result.drift) else 1)

    if not result.ok:
        click.secho("❌ Generation refused; nothing was written:", fg="red", bold=True)
        for issue in result.issues:
            click.echo(f"   • {issue}")
        sys.exit(1)

    icons = {"new": "➕", "changed": "✏️ ", "unchanged": "  ", "stale": "🗑️ "}
    for path, status in sorted(result.status.items()):
        if status != "unchanged":
            click.echo(f"   {icons[status]} {path} ({status})")

    if check:
        if result.drift:
            click.secho("❌ Generated artifacts are out of date. Run 'flywheel manifest generate'.",
                        fg="red", bold=True)
            sys.exit(1)
        click.secho("✅ Generated artifacts are up to date", fg="green")
        return

    if dry_run:
        click.secho(f"📋 Dry run: {len(result.files)} artifact(s) rendered, nothing written", fg="cyan")
        return

    click.secho(f"✅ {len(result.written)} artifact(s) updated in {result.output_dir}", fg="green", bold=True)
