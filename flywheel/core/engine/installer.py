"""
Verified installer fetch — download an upstream script and check its hash.

Only https URLs are fetched. The script bytes are returned only when their
sha256 matches the checksum registry entry; it is never written to disk.
"""

from __future__ import annotations

import hashlib
import logging

import requests

from flywheel.core.errors import FlywheelError

logger = logging.getLogger(__name__)


class InstallerFetchError(FlywheelError):
    """The installer could not be fetched or failed verification."""


def fetch_script(url: str, *, timeout: float) -> bytes:
    """GET an https URL and return the body.

    Raises:
        InstallerFetchError: On a non-https URL, network error or HTTP error.
    """
    if not url.startswith("https://"):
        raise InstallerFetchError(f"Refusing non-https installer URL: {url}")
    try:
        r = requests.get(url, timeout=timeout)
        r.raise_for_status()
    except requests.RequestException as e:
        raise InstallerFetchError(f"Failed to fetch {url}: {e}") from e
    return r.content


def fetch_verified(url: str, expected_sha256: str, *, timeout: float) -> bytes:
    """Fetch an installer and return its exact bytes once the hash matches.

    Raises:
        InstallerFetchError: On fetch failure or checksum mismatch.
    """
    content = fetch_script(url, timeout=timeout)
    actual = hashlib.sha256(content).hexdigest()
    if actual != expected_sha256.lower():
        raise InstallerFetchError(
            f"Checksum mismatch for {url}: expected {expected_sha256}, got {actual}. "
            "Upstream changed the script; update checksums.yaml after reviewing it."
        )
    logger.debug("Verified installer %s (sha256 %s)", url, actual[:12])
    return content
