"""
Selection resolver — filters + defaults + dependency closure → SelectionPlan.

Resolution order:

    1. every referenced id / phase / tag / category must exist
    2. starting set: --only, else --only-phase, else enabled_by_default
    3. dependency closure (unless --no-deps)
    4. skips by id, tag and category; a skip that removes something a
       retained module depends on is an error
    5. order = canonical index order filtered to the members

The plan is computed once per invocation and is read-only afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from flywheel.core.errors import SelectionError
from flywheel.core.models.index import ManifestIndex
from flywheel.core.models.plan import SelectionPlan, SelectionRequest

logger = logging.getLogger(__name__)

# Phase names accepted wherever a phase number is
PHASE_ALIASES: dict[str, int] = {
    "base": 1,
    "users": 2,
    "filesystem": 3,
    "shell": 4,
    "cli": 5,
    "lang": 6,
    "agents": 7,
    "cloud": 8,
    "cloud_db": 8,
    "stack": 9,
    "finalize": 10,
}

# Legacy convenience flags, expressed as skip primitives
LEGACY_SKIP_IDS: dict[str, str] = {
    "skip_postgres": "db.postgres18",
    "skip_vault": "tools.vault",
}
LEGACY_SKIP_TAGS: dict[str, str] = {
    "skip_cloud": "cloud",
}


def apply_legacy_flags(
    request: SelectionRequest,
    *,
    skip_postgres: bool = False,
    skip_vault: bool = False,
    skip_cloud: bool = False,
) -> SelectionRequest:
    """Translate legacy flags into ordinary --skip / --skip-tag entries."""
    flags = {"skip_postgres": skip_postgres, "skip_vault": skip_vault, "skip_cloud": skip_cloud}
    ids = tuple(LEGACY_SKIP_IDS[name] for name, on in flags.items() if on and name in LEGACY_SKIP_IDS)
    tags = tuple(LEGACY_SKIP_TAGS[name] for name, on in flags.items() if on and name in LEGACY_SKIP_TAGS)
    if not ids and not tags:
        return request
    return request.with_skips(ids=ids, tags=tags)


def normalize_phases(values: Iterable[str | int]) -> tuple[list[int], list[str]]:
    """Parse phase numbers and names.

    Returns:
        (phases, unknown) — parsed phase numbers, and inputs that were
        neither a positive integer nor a known phase name.
    """
    phases: list[int] = []
    unknown: list[str] = []
    for value in values:
        text = str(value).strip().lower()
        if text.isdigit() and int(text) > 0:
            phase = int(text)
        elif text in PHASE_ALIASES:
            phase = PHASE_ALIASES[text]
        else:
            unknown.append(str(value))
            continue
        if phase not in phases:
            phases.append(phase)
    return phases, unknown


def resolve_selection(index: ManifestIndex, request: SelectionRequest) -> SelectionPlan:
    """Compute the effective plan for one invocation.

    Raises:
        SelectionError: Unknown references, or a skip that removes a
            module some retained module depends on.
    """
    phases = _check_references(index, request)

    members: dict[str, str] = {}     # id → inclusion reason, insertion ordered
    excluded: dict[str, str] = {}

    # ── Starting set ────────────────────────────────────────────
    if request.only:
        if request.only_phases:
            logger.warning("--only given; ignoring --only-phase")
        for module_id in request.only:
            members.setdefault(module_id, "explicitly requested")
        not_chosen = "not selected"
    elif phases:
        for module_id in index.order:
            entry = index.entry(module_id)
            if entry.phase in phases:
                members[module_id] = f"phase {entry.phase}"
        not_chosen = "filtered by phase"
    else:
        for module_id in index.order:
            if index.entry(module_id).enabled_by_default:
                members[module_id] = "default"
        not_chosen = ""

    # ── Dependency closure ──────────────────────────────────────
    if not request.no_deps:
        queue = list(members)
        while queue:
            current = queue.pop(0)
            for dep in index.entry(current).dependencies:
                if dep not in members:
                    members[dep] = f"dependency of {current}"
                    queue.append(dep)

    # ── Skips ───────────────────────────────────────────────────
    removed: dict[str, str] = {}
    for module_id in list(members):
        reason = _skip_reason(index, request, module_id)
        if reason:
            removed[module_id] = reason
            del members[module_id]

    conflicts = [
        (skipped, retained)
        for retained in members
        for skipped in index.entry(retained).dependencies
        if skipped in removed
    ]
    if conflicts:
        raise SelectionError(_conflict_message(conflicts), tuple(dict.fromkeys(
            mid for pair in conflicts for mid in pair
        )))

    # ── Exclusion reasons ───────────────────────────────────────
    for module_id in index.order:
        if module_id in members:
            continue
        if module_id in removed:
            excluded[module_id] = removed[module_id]
        elif not index.entry(module_id).enabled_by_default and not request.only and not phases:
            excluded[module_id] = "disabled by default"
        else:
            excluded[module_id] = _skip_reason(index, request, module_id) or not_chosen or "not selected"

    # ── Unmet dependencies (only possible under --no-deps) ──────
    unmet: dict[str, tuple[str, ...]] = {}
    for module_id in index.order:
        if module_id not in members:
            continue
        missing = tuple(d for d in index.entry(module_id).dependencies if d not in members)
        if missing:
            unmet[module_id] = missing

    warnings: list[str] = []
    if unmet:
        needed = sorted({d for deps in unmet.values() for d in deps})
        warnings.append(
            "--no-deps: these dependencies will NOT be auto-included: "
            + ", ".join(needed)
            + " (required by " + ", ".join(unmet) + ")"
        )
        for warning in warnings:
            logger.warning(warning)

    order = tuple(mid for mid in index.order if mid in members)
    plan = SelectionPlan(
        manifest_sha256=index.manifest_sha256,
        request=request,
        order=order,
        members=frozenset(members),
        reasons={mid: members[mid] for mid in order},
        excluded=excluded,
        unmet_dependencies=unmet,
        warnings=tuple(warnings),
    )
    logger.info("Resolved plan: %d of %d modules", len(plan), len(index.order))
    return plan


# ── Helpers ─────────────────────────────────────────────────────


def _check_references(index: ManifestIndex, request: SelectionRequest) -> list[int]:
    problems: list[str] = []

    unknown_ids = [mid for mid in (*request.only, *request.skip) if mid not in index]
    if unknown_ids:
        problems.append("unknown module(s): " + ", ".join(dict.fromkeys(unknown_ids)))

    phases, unknown_phases = normalize_phases(request.only_phases)
    unknown_phases.extend(str(p) for p in phases if p not in index.phases)
    if unknown_phases:
        problems.append(
            "unknown phase(s): " + ", ".join(unknown_phases)
            + f" (available: {', '.join(str(p) for p in index.phases)})"
        )

    unknown_tags = [t for t in request.skip_tags if t not in index.tags]
    if unknown_tags:
        problems.append("unknown tag(s): " + ", ".join(unknown_tags))

    unknown_categories = [c for c in request.skip_categories if c not in index.categories]
    if unknown_categories:
        problems.append("unknown category(s): " + ", ".join(unknown_categories))

    if problems:
        raise SelectionError(
            "Invalid selection: " + "; ".join(problems)
            + ". Run 'flywheel install --list-modules' to see what is available.",
            tuple(dict.fromkeys(unknown_ids)),
        )
    return phases


def _skip_reason(index: ManifestIndex, request: SelectionRequest, module_id: str) -> str:
    entry = index.entry(module_id)
    if module_id in request.skip:
        return "explicitly skipped"
    for tag in request.skip_tags:
        if tag in entry.tags:
            return f"skipped tag {tag}"
    if entry.category in request.skip_categories:
        return f"skipped category {entry.category}"
    return ""


def _conflict_message(conflicts: list[tuple[str, str]]) -> str:
    lines = [
        f"Cannot skip {skipped}: it is required by {retained}"
        for skipped, retained in conflicts
    ]
    lines.append(
        "Either stop skipping it, also skip the modules that depend on it, "
        "or pass --no-deps to accept the unmet dependency."
    )
    return "\n".join(lines)
