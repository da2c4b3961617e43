"""
Shared test fixtures and configuration.
"""

import logging
import textwrap
from pathlib import Path

import pytest
import yaml

from flywheel.adapters.mock import MockScriptRunner
from flywheel.core.generators import generate_artifacts, write_artifacts
from flywheel.core.models.manifest import ChecksumRegistry

# base.system → lang.x (default) and cloud.y (off by default)
SMALL_MANIFEST = textwrap.dedent("""\
    version: 1
    name: Test Flywheel
    id: test_flywheel
    modules:
      - id: base.system
        description: Base packages
        phase: 1
        run_as: root
        install:
          - apt-get install -y curl
        verify:
          - curl --version

      - id: lang.x
        description: Language X
        phase: 6
        dependencies: [base.system]
        installed_check:
          command: command -v x
        install:
          - curl -fsSL https://x.example/install.sh -o /tmp/x.sh
          - bash /tmp/x.sh
        verify:
          - x --version
          - x doctor || true

      - id: cloud.y
        description: Cloud Y
        phase: 8
        tags: [cloud]
        enabled_by_default: false
        optional: true
        dependencies: [base.system]
        install:
          - echo install y
        verify:
          - y --version
""")


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """CLI invocations reconfigure the root logger; undo that per test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def small_manifest_bytes() -> bytes:
    return SMALL_MANIFEST.encode("utf-8")


@pytest.fixture
def small_manifest_data() -> dict:
    return yaml.safe_load(SMALL_MANIFEST)


@pytest.fixture
def mock_runner() -> MockScriptRunner:
    return MockScriptRunner()


@pytest.fixture
def generated_repo(tmp_path: Path, small_manifest_bytes: bytes) -> Path:
    """A checkout with the small manifest and freshly generated artifacts."""
    (tmp_path / "flywheel.manifest.yaml").write_bytes(small_manifest_bytes)
    (tmp_path / "checksums.yaml").write_text("installers: {}\n")
    files = generate_artifacts(small_manifest_bytes, ChecksumRegistry())
    write_artifacts(files, tmp_path / "generated")
    return tmp_path


def module_entry(module_id: str, **overrides) -> dict:
    """A minimal valid module mapping."""
    entry = {
        "id": module_id,
        "description": f"Module {module_id}",
        "install": [f"echo install {module_id}"],
        "verify": [f"echo verify {module_id}"],
    }
    entry.update(overrides)
    return entry


def manifest_data(*modules: dict) -> dict:
    return {"version": 1, "name": "Test", "id": "test", "modules": list(modules)}
