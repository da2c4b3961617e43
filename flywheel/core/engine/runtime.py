"""
Runtime — the bindings and primitives every generated procedure receives.

One Runtime is built per invocation, after the plan is resolved, and is
passed explicitly to each procedure. The plan it carries is immutable.

Bindings:   target_user, target_home, dry_run, plan
Primitives: run_as, installed, run_verified_installer,
            log_step / log_info / log_warn / log_error / log_success
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import click

from flywheel.adapters.base import ScriptRequest, ScriptRunner
from flywheel.core.engine.installer import InstallerFetchError, fetch_script, fetch_verified
from flywheel.core.models.action import Receipt
from flywheel.core.models.manifest import ChecksumRegistry
from flywheel.core.models.module import RunAs, Script
from flywheel.core.models.plan import SelectionPlan

logger = logging.getLogger("flywheel.runtime")


@dataclass
class Runtime:
    """Explicit execution context for generated procedures."""

    # ── Bindings ─────────────────────────────────────────────────
    target_user: str
    target_home: str
    plan: SelectionPlan
    runner: ScriptRunner
    dry_run: bool = False
    checksums: ChecksumRegistry = field(default_factory=ChecksumRegistry)

    # ── Limits & output ──────────────────────────────────────────
    command_timeout: float = 1800.0
    check_timeout: float = 60.0
    fetch_timeout: float = 60.0
    echo: bool = True

    # ── Process primitives ──────────────────────────────────────

    def _request(self, module_id: str, identity: RunAs, script: Script, **kwargs) -> ScriptRequest:
        return ScriptRequest(
            module_id=module_id,
            identity=identity,
            script=script,
            target_user=self.target_user,
            target_home=self.target_home,
            **kwargs,
        )

    def run_as(self, module_id: str, identity: RunAs, script: Script, *, timeout: float | None = None) -> Receipt:
        """Run one script body as ``identity``; never raises."""
        request = self._request(
            module_id, identity, script,
            timeout=timeout if timeout is not None else self.command_timeout,
        )
        receipt = self.runner.run(request)
        if receipt.failed:
            logger.debug("%s: script failed (%s): %s", module_id, script.summary, receipt.error)
        return receipt

    def installed(self, module_id: str, identity: RunAs, script: Script) -> bool:
        """Installed-check gate. Runs in dry-run mode too; it only reads state."""
        return self.run_as(module_id, identity, script, timeout=self.check_timeout).ok

    def run_verified_installer(
        self,
        module_id: str,
        identity: RunAs,
        tool: str,
        *,
        runner: str = "bash",
        args: list[str] | None = None,
        fallback_url: str | None = None,
    ) -> Receipt:
        """Fetch an upstream installer, verify its sha256, then run it.

        If verification fails and the module declares ``fallback_url``,
        that script is run unverified with a warning. Otherwise the
        failure is returned as a Receipt.
        """
        entry = self.checksums.get(tool)
        if entry is None:
            return Receipt.failure(module_id, f"No checksum entry for installer '{tool}'")

        verified = True
        try:
            if not entry.pinned:
                raise InstallerFetchError(f"Installer '{tool}' has no pinned sha256 in checksums.yaml")
            content = fetch_verified(entry.url, entry.sha256, timeout=self.fetch_timeout)
        except InstallerFetchError as e:
            if not fallback_url:
                self.log_error(f"{module_id}: {e}")
                return Receipt.failure(module_id, str(e))
            self.log_warn(f"{module_id}: {e}; falling back to {fallback_url} (unverified)")
            try:
                content = fetch_script(fallback_url, timeout=self.fetch_timeout)
            except InstallerFetchError as fallback_error:
                return Receipt.failure(module_id, str(fallback_error))
            verified = False

        request = self._request(
            module_id, identity, Script(body=content.decode("utf-8", errors="replace")),
            raw=content,
            interpreter=runner,
            args=list(args or []),
            strict=False,
            timeout=self.command_timeout,
        )
        receipt = self.runner.run(request)
        receipt.metadata.update({"installer": tool, "verified": verified})
        return receipt

    # ── Logging primitives ──────────────────────────────────────

    def _emit(self, level: int, message: str, prefix: str, color: str | None) -> None:
        logger.log(level, message)
        if self.echo:
            click.secho(f"{prefix}{message}", fg=color, err=True)

    def log_step(self, message: str) -> None:
        self._emit(logging.INFO, message, "▶ ", "cyan")

    def log_info(self, message: str) -> None:
        self._emit(logging.INFO, message, "  ", None)

    def log_warn(self, message: str) -> None:
        self._emit(logging.WARNING, message, "⚠️  ", "yellow")

    def log_error(self, message: str) -> None:
        self._emit(logging.ERROR, message, "❌ ", "red")

    def log_success(self, message: str) -> None:
        self._emit(logging.INFO, message, "✅ ", "green")
