"""
CLI commands for installing: install (local artifacts) and bootstrap (fetched snapshot).

Both share the selection flags. Legacy flags are translated into
ordinary --skip / --skip-tag entries before resolution.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from pathlib import Path

import click

from flywheel.core.manifest.selection import apply_legacy_flags
from flywheel.core.models.index import ManifestIndex
from flywheel.core.models.plan import SelectionPlan, SelectionRequest
from flywheel.ui.cli.common import fail, load_settings, split_values

_SELECTION_OPTIONS = [
    click.option("--only", multiple=True, help="Install only these module ids (plus dependencies)."),
    click.option("--only-phase", "only_phases", multiple=True, help="Install only these phases (number or name)."),
    click.option("--skip", multiple=True, help="Skip these module ids."),
    click.option("--skip-tag", "skip_tags", multiple=True, help="Skip modules carrying this tag."),
    click.option("--skip-category", "skip_categories", multiple=True, help="Skip modules in this category."),
    click.option("--no-deps", is_flag=True, help="Do not add dependencies automatically (warns)."),
    click.option("--skip-postgres", is_flag=True, help="Legacy: same as --skip db.postgres18."),
    click.option("--skip-vault", is_flag=True, help="Legacy: same as --skip tools.vault."),
    click.option("--skip-cloud", is_flag=True, help="Legacy: same as --skip-tag cloud."),
    click.option("--print-plan", is_flag=True, help="Print the resolved plan and exit."),
    click.option("--list-modules", is_flag=True, help="List every module in the index and exit."),
    click.option("--dry-run", is_flag=True, help="Narrate actions without changing anything."),
    click.option("--force-reinstall", is_flag=True, help="Discard saved progress from an interrupted run."),
    click.option("--target-user", default=None, help="Account to provision (default: $TARGET_USER)."),
    click.option("--target-home", default=None, help="Home of the target account (default: $TARGET_HOME)."),
    click.option("--state-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
                 help="Resume state file (default: ~target/.flywheel/install_state.json)."),
    click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
]


def selection_options(fn: Callable) -> Callable:
    for option in reversed(_SELECTION_OPTIONS):
        fn = option(fn)
    return fn


def build_request(opts: dict) -> SelectionRequest:
    request = SelectionRequest(
        only=split_values(opts["only"]),
        only_phases=split_values(opts["only_phases"]),
        skip=split_values(opts["skip"]),
        skip_tags=split_values(opts["skip_tags"]),
        skip_categories=split_values(opts["skip_categories"]),
        no_deps=opts["no_deps"],
    )
    return apply_legacy_flags(
        request,
        skip_postgres=opts["skip_postgres"],
        skip_vault=opts["skip_vault"],
        skip_cloud=opts["skip_cloud"],
    )


# ── Rendering ───────────────────────────────────────────────────


def render_modules(index: ManifestIndex) -> None:
    click.secho(f"📦 Modules ({len(index.order)}):", fg="cyan", bold=True)
    for module_id in index.order:
        entry = index.entry(module_id)
        flags = []
        if not entry.enabled_by_default:
            flags.append("off by default")
        if entry.optional:
            flags.append("optional")
        if not entry.generated:
            flags.append("orchestration-only")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        click.echo(f"   {entry.phase:>2}  {module_id:<28} {entry.description}{suffix}")


def render_plan(plan: SelectionPlan, index: ManifestIndex, quiet: bool = False) -> None:
    for warning in plan.warnings:
        click.secho(f"⚠️  {warning}", fg="yellow")
    click.secho(f"📋 Plan ({len(plan)} of {len(index.order)} modules):", fg="cyan", bold=True)
    phase = None
    for n, module_id in enumerate(plan.order, start=1):
        entry = index.entry(module_id)
        if entry.phase != phase:
            phase = entry.phase
            click.secho(f"   Phase {phase}", bold=True)
        click.echo(f"   {n:>3}. {module_id:<28} {plan.reasons[module_id]}")
    if plan.excluded and not quiet:
        click.echo()
        click.secho("   Excluded:", fg="white", bold=True)
        for module_id, reason in sorted(plan.excluded.items()):
            click.echo(f"        {module_id:<28} {reason}")


def _render_listing(ctx: click.Context, opts: dict, result) -> None:
    """--list-modules / --print-plan output for a resolved result."""
    if result.index is None or result.plan is None:
        fail("No plan was resolved")
    if opts["list_modules"]:
        render_modules(result.index)
    if opts["print_plan"]:
        render_plan(result.plan, result.index, quiet=ctx.obj.get("quiet", False))


def _finish(result, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)
    if result.error:
        fail(result.error, result.error_ids)
    report = result.report
    if report is None:
        return
    click.echo()
    label = "Dry run" if report.dry_run else "Install"
    color = "green" if report.status == "ok" else "yellow"
    click.secho(
        f"✅ {label} {report.status}: {report.succeeded} ok, "
        f"{report.skipped} skipped, {report.failed} failed",
        fg=color, bold=True,
    )


def _run(ctx: click.Context, opts: dict, execute: Callable) -> None:
    settings = load_settings(
        ctx,
        target_user=opts["target_user"],
        target_home=opts["target_home"],
        state_file=opts["state_file"],
    )
    request = build_request(opts)
    execute(request, settings)


# ── install ─────────────────────────────────────────────────────


@click.command()
@click.option("--generated-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Directory with generated artifacts (default: ./generated).")
@selection_options
@click.pass_context
def install(ctx: click.Context, generated_dir: Path | None, **opts) -> None:
    """Install modules from locally generated artifacts."""
    from flywheel.core.use_cases.install import plan_install, run_install

    generated_dir = generated_dir or Path.cwd() / "generated"
    as_json = opts["as_json"]

    def execute(request: SelectionRequest, settings) -> None:
        if opts["list_modules"] or opts["print_plan"]:
            result = plan_install(generated_dir, request)
            if as_json or result.error:
                _finish(result, as_json)
            _render_listing(ctx, opts, result)
            return

        result = run_install(
            generated_dir, request, settings,
            dry_run=opts["dry_run"],
            force_reinstall=opts["force_reinstall"],
            echo=not as_json,
        )
        _finish(result, as_json)

    _run(ctx, opts, execute)


# ── bootstrap ───────────────────────────────────────────────────


@click.command()
@click.option("--owner", default=None, help="Repository owner (default: $FLYWHEEL_REPO_OWNER).")
@click.option("--name", "repo_name", default=None, help="Repository name (default: $FLYWHEEL_REPO_NAME).")
@click.option("--ref", default=None, help="Branch, tag or commit (default: $FLYWHEEL_REF).")
@click.option("--keep", is_flag=True, help="Keep the temporary workspace for debugging.")
@selection_options
@click.pass_context
def bootstrap(
    ctx: click.Context,
    owner: str | None,
    repo_name: str | None,
    ref: str | None,
    keep: bool,
    **opts,
) -> None:
    """Fetch one validated snapshot, then install from it."""
    from flywheel.core.use_cases.bootstrap import run_bootstrap

    as_json = opts["as_json"]
    plan_only = opts["list_modules"] or opts["print_plan"]

    def execute(request: SelectionRequest, settings) -> None:
        settings = settings.override(
            repo_owner=owner, repo_name=repo_name, ref=ref, keep_bootstrap=keep or None,
        )
        if not as_json:
            click.secho(f"🌐 Bootstrapping {settings.repo_owner}/{settings.repo_name}@{settings.ref}",
                        fg="cyan", bold=True)
        result = run_bootstrap(
            request, settings,
            dry_run=opts["dry_run"], force_reinstall=opts["force_reinstall"],
            plan_only=plan_only, echo=not as_json,
        )
        if plan_only and not as_json and not result.error:
            _render_listing(ctx, opts, result)
            return
        _finish(result, as_json)

    _run(ctx, opts, execute)
