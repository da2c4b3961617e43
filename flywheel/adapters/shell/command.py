"""
Shell script runner — feed a script on stdin to bash/sh under an identity.

Identity mapping:

    current      the invoking account, no privilege change
    root         direct when already root, else sudo
    target_user  direct when already that user, else sudo -u <user>
                 with HOME pointed at the target home

Every path runs through ``env`` so TARGET_USER and TARGET_HOME reach the
script even after sudo resets the environment.

The script is never placed on the command line. It is written to the
interpreter's stdin; the interpreter moves it to fd 3 and sources it from
there, so commands inside the script see /dev/null on stdin and cannot
swallow the rest of the body.
"""

from __future__ import annotations

import getpass
import logging
import os
import shutil
import subprocess
import time

from flywheel.adapters.base import ScriptRequest, ScriptRunner
from flywheel.core.models.action import Receipt

logger = logging.getLogger(__name__)

# Where per-user tool installers drop their binaries
_TOOL_PATH = "$HOME/.local/bin:$HOME/.cargo/bin:$HOME/.bun/bin:$HOME/go/bin:/usr/local/bin"

_STRICT_PREAMBLE = {
    "bash": f'set -euo pipefail\nexport PATH="{_TOOL_PATH}:$PATH"\n',
    "sh": f'set -eu\nexport PATH="{_TOOL_PATH}:$PATH"\n',
}

# Read the body from the original stdin (now fd 3); give the body /dev/null
_SOURCE_STDIN = "exec 3<&0 </dev/null; . /dev/fd/3"


def build_argv(request: ScriptRequest, *, euid: int | None = None, user: str | None = None) -> list[str]:
    """Command line for a request; the script itself goes to stdin."""
    euid = os.geteuid() if euid is None else euid
    user = getpass.getuser() if user is None else user

    interp = [request.interpreter, "-c", _SOURCE_STDIN, request.interpreter, *request.args]
    env = ["env", f"TARGET_USER={request.target_user}", f"TARGET_HOME={request.target_home}"]

    if request.identity == "current":
        return [*env, *interp]
    if request.identity == "root":
        return [*env, *interp] if euid == 0 else ["sudo", "-n", *env, *interp]

    # target_user
    if user == request.target_user:
        return [*env, *interp]
    return [
        "sudo", "-n", "-u", request.target_user,
        *env, f"HOME={request.target_home}", f"USER={request.target_user}",
        *interp,
    ]


def build_stdin(request: ScriptRequest) -> bytes:
    """Exact bytes fed to the interpreter."""
    if request.raw is not None:
        return request.raw
    body = request.script.body
    if not body.endswith("\n"):
        body += "\n"
    if request.strict:
        body = _STRICT_PREAMBLE[request.interpreter] + body
    return body.encode("utf-8")


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace").strip()


class ShellScriptRunner(ScriptRunner):
    """Run scripts through a local bash/sh process and capture output."""

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which("bash") is not None

    def execute(self, request: ScriptRequest) -> Receipt:
        argv = build_argv(request)
        logger.debug(
            "Running %s as %s: %s",
            request.module_id, request.identity, request.script.summary,
        )
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                input=build_stdin(request),
                capture_output=True,
                timeout=request.timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                request.module_id,
                f"Script timed out after {request.timeout:g}s",
                metadata={"identity": request.identity, "timeout": request.timeout},
            )
        except OSError as e:
            return Receipt.failure(
                request.module_id,
                f"Script execution error: {e}",
                metadata={"identity": request.identity, "argv": argv},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = _decode(result.stdout)
        stderr = _decode(result.stderr)

        if result.returncode == 0:
            return Receipt.success(
                request.module_id,
                output=output,
                duration_ms=elapsed_ms,
                metadata={"identity": request.identity, "return_code": 0, "stderr": stderr},
            )
        return Receipt.failure(
            request.module_id,
            stderr or f"Script exited with code {result.returncode}",
            output=output,
            duration_ms=elapsed_ms,
            metadata={"identity": request.identity, "return_code": result.returncode},
        )
