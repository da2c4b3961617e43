"""
Bootstrap fetcher — one snapshot, validated before anything is loaded.

Used when there is no local checkout (``flywheel bootstrap``). Each step
gates the next:

    1. isolated temporary workspace
    2. download ONE archive for one ref (retried with backoff)
    3. well-formed gzip tarball
    4. safe extraction of the required set (no absolute paths, no "..",
       no links or devices)
    5. required files present
    6. syntax check of every script (compile() for .py, bash -n for .sh)
    7. coherence: sha256(manifest) == index.manifest_sha256, and every
       generated module records the same hash
    8. expose the workspace

The workspace is removed on success and on failure unless ``keep``.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import subprocess
import tarfile
import tempfile
import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import requests

from flywheel.core.config.loader import CHECKSUMS_FILE, MANIFEST_FILE, load_checksums
from flywheel.core.engine.procedures import load_procedures, recorded_sha256
from flywheel.core.errors import BootstrapError, ManifestValidationError
from flywheel.core.models.index import INDEX_FILENAME, ManifestIndex
from flywheel.core.models.manifest import ChecksumRegistry

logger = logging.getLogger(__name__)

GENERATED_DIR = "generated"

# Top-level entries extracted from the archive; everything else is ignored
EXTRACT_SET: tuple[str, ...] = ("flywheel", GENERATED_DIR, MANIFEST_FILE, CHECKSUMS_FILE, "assets")

REQUIRED_FILES: tuple[str, ...] = (
    MANIFEST_FILE,
    CHECKSUMS_FILE,
    f"{GENERATED_DIR}/{INDEX_FILENAME}",
    "flywheel/core/engine/runtime.py",
    "flywheel/core/engine/contract.py",
)

_SYNTAX_TIMEOUT = 30


@dataclass(frozen=True)
class ArchiveSource:
    """(owner, name, ref) → one snapshot URL."""

    owner: str
    name: str
    ref: str

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}/archive/{self.ref}.tar.gz"

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}@{self.ref}"


@dataclass
class BootstrapWorkspace:
    """Paths inside a validated snapshot."""

    root: Path
    source: ArchiveSource
    index: ManifestIndex
    manifest_sha256: str

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    @property
    def checksums_path(self) -> Path:
        return self.root / CHECKSUMS_FILE

    @property
    def generated_dir(self) -> Path:
        return self.root / GENERATED_DIR

    def load_checksums(self) -> ChecksumRegistry:
        return load_checksums(self.checksums_path)

    def load_procedures(self) -> dict[str, Callable]:
        return load_procedures(self.generated_dir, self.index)


Downloader = Callable[[str, Path, float], None]


def http_download(url: str, dest: Path, timeout: float) -> None:
    """Stream ``url`` into ``dest``. Raises requests exceptions."""
    with requests.get(url, stream=True, timeout=timeout) as r:
        r.raise_for_status()
        with dest.open("wb") as fh:
            for chunk in r.iter_content(chunk_size=65536):
                fh.write(chunk)


class BootstrapFetcher:
    """Context manager yielding a validated BootstrapWorkspace.

    Usage:
        with BootstrapFetcher(ArchiveSource("org", "repo", "v1.2.0")) as ws:
            procedures = ws.load_procedures()
    """

    def __init__(
        self,
        source: ArchiveSource,
        *,
        keep: bool = False,
        timeout: float = 60.0,
        retries: int = 3,
        backoff: float = 1.0,
        download: Downloader = http_download,
    ):
        self.source = source
        self.keep = keep
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff
        self._download = download
        self._tmpdir: Path | None = None

    def __enter__(self) -> BootstrapWorkspace:
        return self.fetch()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    @property
    def workdir(self) -> Path | None:
        return self._tmpdir

    def fetch(self) -> BootstrapWorkspace:
        """Run every step; on any failure clean up and raise BootstrapError."""
        self._tmpdir = Path(tempfile.mkdtemp(prefix="flywheel-bootstrap-"))
        logger.info("Bootstrapping %s into %s", self.source, self._tmpdir)
        try:
            archive = self._tmpdir / "snapshot.tar.gz"
            root = self._tmpdir / "snapshot"
            self._download_with_retries(archive)
            self._extract(archive, root)
            archive.unlink()
            check_required_files(root)
            check_syntax(root)
            index, sha = check_coherence(root)
        except BaseException:
            self.cleanup()
            raise
        return BootstrapWorkspace(root=root, source=self.source, index=index, manifest_sha256=sha)

    def cleanup(self) -> None:
        if self._tmpdir is None:
            return
        if self.keep:
            logger.warning("Keeping bootstrap workspace at %s", self._tmpdir)
            return
        shutil.rmtree(self._tmpdir, ignore_errors=True)
        logger.debug("Removed bootstrap workspace %s", self._tmpdir)
        self._tmpdir = None

    # ── Steps ───────────────────────────────────────────────────

    def _download_with_retries(self, dest: Path) -> None:
        url = self.source.url
        last_error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            try:
                self._download(url, dest, self.timeout)
                logger.debug("Downloaded %s (attempt %d)", url, attempt)
                return
            except (requests.RequestException, OSError) as e:
                last_error = e
                logger.warning("Download attempt %d/%d failed: %s", attempt, self.retries, e)
                if attempt < self.retries:
                    time.sleep(self.backoff * 2 ** (attempt - 1))
        raise BootstrapError(
            f"Failed to download {url} after {self.retries} attempt(s): {last_error}",
            remedy="Check network access and that the ref exists, then retry, "
                   "or pin FLYWHEEL_REF to a known-good tag or commit sha.",
        )

    def _extract(self, archive: Path, root: Path) -> None:
        try:
            tar = tarfile.open(archive, "r:gz")
        except (tarfile.TarError, OSError, zlib.error) as e:
            raise BootstrapError(f"Downloaded file from {self.source.url} is not a valid archive: {e}") from e
        with tar:
            try:
                safe_extract(tar, root)
            except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
                raise BootstrapError(
                    f"Corrupt archive from {self.source.url}: {e}",
                    remedy="Retry the bootstrap; if it keeps failing, pin FLYWHEEL_REF to another commit.",
                ) from e


# ── Validation steps (also used on local checkouts) ─────────────


def safe_extract(tar: tarfile.TarFile, root: Path) -> int:
    """Extract the required set, stripping the archive's top directory.

    Returns:
        Number of files written.

    Raises:
        BootstrapError: On absolute paths, "..", links or special files.
    """
    root.mkdir(parents=True, exist_ok=True)
    written = 0
    for member in tar.getmembers():
        name = PurePosixPath(member.name)
        if name.is_absolute() or ".." in name.parts:
            raise BootstrapError(f"Archive member escapes the workspace: {member.name}")
        if member.issym() or member.islnk():
            raise BootstrapError(f"Archive contains a link: {member.name}")
        if not (member.isfile() or member.isdir()):
            raise BootstrapError(f"Archive contains a special file: {member.name}")

        parts = name.parts[1:]  # strip "<repo>-<ref>/"
        if not parts or parts[0] not in EXTRACT_SET:
            continue

        dest = root.joinpath(*parts)
        if member.isdir():
            dest.mkdir(parents=True, exist_ok=True)
            continue
        dest.parent.mkdir(parents=True, exist_ok=True)
        src = tar.extractfile(member)
        if src is None:
            raise BootstrapError(f"Cannot read archive member: {member.name}")
        with src, dest.open("wb") as fh:
            shutil.copyfileobj(src, fh)
        if member.mode & 0o111:
            dest.chmod(0o755)
        written += 1
    logger.debug("Extracted %d files into %s", written, root)
    return written


def check_required_files(root: Path) -> None:
    missing = [rel for rel in REQUIRED_FILES if not (root / rel).is_file()]
    if not any((root / GENERATED_DIR).glob("install_*.py")):
        missing.append(f"{GENERATED_DIR}/install_*.py")
    if missing:
        raise BootstrapError(
            "Snapshot is missing required files: " + ", ".join(missing),
            remedy="The ref may predate this layout or be a broken commit. "
                   "Pin FLYWHEEL_REF to a known-good tag or commit sha.",
        )


def check_syntax(root: Path) -> None:
    """Syntax-check every script without running it."""
    errors: list[str] = []
    for path in sorted(root.rglob("*.py")):
        try:
            compile(path.read_bytes(), str(path), "exec")
        except (SyntaxError, ValueError) as e:
            errors.append(f"{path.relative_to(root)}: {e}")

    for path in sorted(root.rglob("*.sh")):
        try:
            result = subprocess.run(
                ["bash", "-n", str(path)],
                capture_output=True, text=True, errors="replace", timeout=_SYNTAX_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            errors.append(f"{path.relative_to(root)}: cannot check syntax: {e}")
            continue
        if result.returncode != 0:
            errors.append(f"{path.relative_to(root)}: {result.stderr.strip()}")

    if errors:
        raise BootstrapError("Syntax errors in fetched scripts:\n  " + "\n  ".join(errors))


def check_coherence(root: Path) -> tuple[ManifestIndex, str]:
    """All artifacts must come from the same manifest snapshot.

    Returns:
        (index, manifest sha256)
    """
    sha = hashlib.sha256((root / MANIFEST_FILE).read_bytes()).hexdigest()
    try:
        index = ManifestIndex.load(root / GENERATED_DIR / INDEX_FILENAME)
    except ManifestValidationError as e:
        raise BootstrapError(f"Invalid generated index: {e}") from e

    mismatched: list[str] = []
    if index.manifest_sha256 != sha:
        mismatched.append(f"{INDEX_FILENAME} records {index.manifest_sha256[:12]}")
    for path in sorted((root / GENERATED_DIR).glob("install_*.py")):
        recorded = recorded_sha256(path.read_text(encoding="utf-8"))
        if recorded != sha:
            mismatched.append(f"{path.name} records {(recorded or 'nothing')[:12]}")

    if mismatched:
        raise BootstrapError(
            f"Mixed snapshot: manifest sha256 is {sha[:12]} but " + "; ".join(mismatched),
            remedy="The generated artifacts are out of date for this ref. "
                   "Pin FLYWHEEL_REF to a released tag, or regenerate and push.",
        )
    return index, sha
