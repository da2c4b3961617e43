"""
Bootstrap use case — fetch one validated snapshot, then install from it.
"""

from __future__ import annotations

import logging

from flywheel.adapters.base import ScriptRunner
from flywheel.core.bootstrap.fetcher import ArchiveSource, BootstrapFetcher, Downloader, http_download
from flywheel.core.config.settings import Settings
from flywheel.core.errors import BootstrapError
from flywheel.core.models.plan import SelectionRequest
from flywheel.core.use_cases.install import InstallResult, plan_install, run_install

logger = logging.getLogger(__name__)


def source_from_settings(settings: Settings) -> ArchiveSource:
    return ArchiveSource(owner=settings.repo_owner, name=settings.repo_name, ref=settings.ref)


def run_bootstrap(
    request: SelectionRequest,
    settings: Settings,
    *,
    dry_run: bool = False,
    force_reinstall: bool = False,
    plan_only: bool = False,
    runner: ScriptRunner | None = None,
    download: Downloader = http_download,
    echo: bool = True,
) -> InstallResult:
    """Fetch ``settings``' snapshot and run the install against it.

    Nothing from the snapshot is imported until every bootstrap check
    has passed. The workspace is removed afterwards unless
    ``settings.keep_bootstrap``.

    Args:
        plan_only: Resolve the plan from the snapshot's index and stop.
    """
    source = source_from_settings(settings)
    fetcher = BootstrapFetcher(
        source,
        keep=settings.keep_bootstrap,
        timeout=settings.fetch_timeout,
        retries=settings.fetch_retries,
        download=download,
    )
    try:
        with fetcher as workspace:
            logger.info("Snapshot %s validated (manifest sha256 %s)", source, workspace.manifest_sha256[:12])
            if plan_only:
                return plan_install(workspace.generated_dir, request)
            return run_install(
                workspace.generated_dir,
                request,
                settings,
                dry_run=dry_run,
                force_reinstall=force_reinstall,
                checksums_path=workspace.checksums_path,
                runner=runner,
                echo=echo,
            )
    except BootstrapError as e:
        return InstallResult(error=str(e))
