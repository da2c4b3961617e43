"""
Procedure generator — one Python module of install procedures per category.

Every procedure has the same control shape, in order:

    contract check → plan membership → installed check → dry-run
    narration → real action → verification

String payloads are embedded with ``repr()``, so a script body is always
a Python string literal handed to the run-as primitive on stdin. Nothing
is ever interpolated into shell text here.

The emitted modules import only the runtime contract and models; they
have no side effects at import time.
"""

from __future__ import annotations

from flywheel.core.errors import FlywheelError
from flywheel.core.generators.index import category_module_name
from flywheel.core.models.module import Module, Script
from flywheel.core.models.template import GeneratedFile

_HEADER = """\
# Generated by 'flywheel manifest generate' from flywheel.manifest.yaml.
# DO NOT EDIT: change the manifest and regenerate.
# manifest sha256: {sha256}
\"\"\"Install procedures for category {category!r}.\"\"\"

from __future__ import annotations

from flywheel.core.engine.contract import require_contract
from flywheel.core.engine.runtime import Runtime
from flywheel.core.models.action import Receipt
from flywheel.core.models.module import Script

CATEGORY = {category!r}
"""

_CATEGORY_RUNNER = '''

def {name}(rt: Runtime) -> list[Receipt]:
    """Run every {category} procedure in canonical order.

    A failed optional module is logged and the loop continues; the first
    failed required module stops it.
    """
    receipts: list[Receipt] = []
    for module_id, procedure in PROCEDURES.items():
        receipt = procedure(rt)
        receipts.append(receipt)
        if not receipt.failed:
            continue
        if module_id in OPTIONAL:
            rt.log_warn("Optional module " + module_id + " failed: " + (receipt.error or ""))
            continue
        break
    return receipts
'''


class _Writer:
    """Indented line buffer."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def __call__(self, line: str = "", indent: int = 1) -> None:
        self.lines.append(("    " * indent + line) if line else "")

    def text(self) -> str:
        return "\n".join(self.lines) + "\n"


def _script(body: str) -> str:
    return f"Script(body={body!r})"


def render_procedure(module: Module) -> str:
    """Source of one ``install_<id>`` function."""
    mid = module.id
    identity = module.run_as
    w = _Writer()

    w(f"def {module.procedure_name}(rt: Runtime) -> Receipt:", indent=0)
    w(f'"""{_docstring(module)}"""')
    w(f"module_id = {mid!r}")
    verified = module.verified_installer is not None
    needs = []
    if module.installed_check is not None:
        needs.append("installed_check=True")
    if verified:
        needs.append("verified_installer=True")
    w(f"require_contract({', '.join(['rt', repr(module.procedure_name), *needs])})")
    w("if not rt.plan.should_run(module_id):")
    w('return Receipt.skip(module_id, "not in plan")', indent=2)

    # Installed check runs in dry-run too: it only reads existing state
    if module.installed_check is not None:
        check = module.installed_check
        w("")
        w(f"if rt.installed(module_id, {check.run_as!r}, {_script(check.command)}):")
        w(f"rt.log_info({mid + ': already installed'!r})", indent=2)
        w('return Receipt.skip(module_id, "already installed")', indent=2)

    # ── Dry run ──────────────────────────────────────────────────
    w("")
    w("if rt.dry_run:")
    for line in _narration(module):
        w(f"rt.log_info({line!r})", indent=2)
    w('return Receipt.success(module_id, "dry-run", metadata={"dry_run": True})', indent=2)

    # ── Real action ──────────────────────────────────────────────
    w("")
    w(f"rt.log_step({'Installing ' + mid + ': ' + module.description!r})")
    if verified:
        vi = module.verified_installer
        w("result = rt.run_verified_installer(")
        w(f"module_id, {identity!r}, {vi.tool!r},", indent=2)
        w(f"runner={vi.runner!r}, args={list(vi.args)!r}, fallback_url={vi.fallback_url!r},", indent=2)
        w(")")
    else:
        script = _install_script(module)
        w(f"result = rt.run_as(module_id, {identity!r}, {_script(script.body)})")
    w("if result.failed:")
    w(f"rt.log_error({mid + ': install failed'!r})", indent=2)
    w('return Receipt.failure(module_id, "install failed: " + (result.error or ""), output=result.output)', indent=2)

    # ── Verify ───────────────────────────────────────────────────
    for check in module.verify:
        summary = check.summary
        w("")
        w(f"result = rt.run_as(module_id, {identity!r}, {_script(check.script.body)})")
        w("if result.failed:")
        if check.optional:
            w(f"rt.log_warn({mid + ': optional check failed: ' + summary!r})", indent=2)
        elif module.optional:
            w(f"rt.log_warn({mid + ' (optional): verify failed: ' + summary!r})", indent=2)
        else:
            w(f"rt.log_error({mid + ': verify failed: ' + summary!r})", indent=2)
            w(f"return Receipt.failure(module_id, {'verify failed: ' + summary!r}, output=result.output)", indent=2)

    w("")
    w(f"rt.log_success({mid + ' installed'!r})")
    w('return Receipt.success(module_id, "installed")')
    return w.text()


def render_category(category: str, modules: list[Module], manifest_sha256: str) -> str:
    """Source of ``install_<category>.py``; modules arrive in canonical order."""
    parts = [_HEADER.format(sha256=manifest_sha256, category=category)]
    for module in modules:
        parts.append("\n\n" + render_procedure(module))

    table = ["", "", "# module id → procedure, canonical order", "PROCEDURES = {"]
    table.extend(f"    {m.id!r}: {m.procedure_name}," for m in modules)
    table.append("}")
    optional = sorted(m.id for m in modules if m.optional)
    table += ["", "# failures here warn instead of stopping the category", f"OPTIONAL = frozenset({optional!r})"]
    parts.append("\n".join(table) + "\n")
    parts.append(_CATEGORY_RUNNER.format(name=category_module_name(category), category=category))
    return "".join(parts)


def generate(modules_in_order: list[Module], manifest_sha256: str) -> list[GeneratedFile]:
    """One GeneratedFile per category that has at least one generated module.

    Files are sorted by path so the output list itself is deterministic.
    """
    by_category: dict[str, list[Module]] = {}
    for module in modules_in_order:
        if module.generated:
            by_category.setdefault(module.effective_category, []).append(module)

    files = [
        GeneratedFile(
            path=f"{category_module_name(category)}.py",
            content=render_category(category, members, manifest_sha256),
            reason=f"{len(members)} install procedure(s) for category {category}",
        )
        for category, members in by_category.items()
    ]
    return sorted(files, key=lambda f: f.path)


# ── Helpers ─────────────────────────────────────────────────────


def _docstring(module: Module) -> str:
    text = " ".join(module.description.split())
    text = text.replace("\\", "/").replace('"', "'")
    return f"{text} (phase {module.phase})."


def _narration(module: Module) -> list[str]:
    prefix = f"[dry-run] {module.id}: "
    vi = module.verified_installer
    if vi is not None:
        argv = " ".join([vi.runner, *vi.args])
        return [prefix + f"would fetch verified installer '{vi.tool}' and run it with {argv} as {module.run_as}"]
    script = _install_script(module)
    lines = [prefix + f"would run {len(module.install)} install step(s) as {module.run_as}:"]
    lines.extend(f"[dry-run]   {line}" for line in script.lines if line.strip())
    return lines


def _install_script(module: Module) -> Script:
    script = module.install_script
    if script is None:
        raise FlywheelError(f"{module.id}: no install steps to generate")
    return script
