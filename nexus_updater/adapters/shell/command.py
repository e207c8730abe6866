"""
Shell command adapter — run build and install steps.

Recipe steps are shell strings (``./configure --prefix=/usr/local``) or
argument lists. Long compiles stream straight to the operator's
terminal when ``stream`` is set; everything else is captured so the
output can go into the failure message.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from pathlib import Path

from nexus_updater.adapters.base import Adapter, ExecutionContext
from nexus_updater.core.models.action import Receipt

logger = logging.getLogger(__name__)

# make -j4 on a Pi 3 takes a while
DEFAULT_TIMEOUT = 3 * 60 * 60


def with_sudo(cmd: list[str]) -> list[str]:
    """Prefix ``sudo`` unless we already are root."""
    if os.geteuid() == 0:
        return cmd
    return ["sudo", *cmd]


class ShellCommandAdapter(Adapter):
    """Execute shell commands.

    Action params:
        operation (str): Always ``run``.
        command (str | list[str]): The command to execute.
        sudo (bool): Run as root (default: False).
        cwd (str): Working directory.
        timeout (int): Timeout in seconds.
        stream (bool): Inherit the terminal instead of capturing output.
        env (dict): Extra environment variables.
    """

    operations = frozenset({"run"})

    @property
    def name(self) -> str:
        return "shell"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, err = super().validate(context)
        if not ok:
            return ok, err

        if not context.param("command"):
            return False, "Missing required param: 'command'"

        cwd = context.param("cwd")
        if cwd and not Path(cwd).is_dir():
            return False, f"Working directory does not exist: {cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        command = context.param("command")
        timeout = context.param("timeout", DEFAULT_TIMEOUT)
        cwd = context.param("cwd")
        stream = context.param("stream", context.stream_output)

        if isinstance(command, str):
            argv = ["sh", "-c", command]
            display = command
        else:
            argv = [str(c) for c in command]
            display = shlex.join(argv)

        if context.param("sudo", False):
            argv = with_sudo(argv)

        env = None
        if context.param("env"):
            env = os.environ.copy()
            env.update({k: str(v) for k, v in context.param("env").items()})

        logger.debug("Executing: %s (cwd=%s)", display, cwd)
        start = time.monotonic()

        try:
            if stream:
                result = subprocess.run(argv, cwd=cwd, env=env, timeout=timeout)
                output, stderr = "", ""
            else:
                result = subprocess.run(
                    argv,
                    cwd=cwd,
                    env=env,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                )
                output, stderr = result.stdout.strip(), result.stderr.strip()
        except subprocess.TimeoutExpired:
            return self._fail(
                context,
                f"Command timed out after {timeout}s",
                command=display,
                timeout=timeout,
            )
        except OSError as e:
            return self._fail(context, f"Command execution error: {e}", command=display)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode == 0:
            receipt = self._ok(
                context,
                output,
                command=display,
                return_code=0,
                stderr=stderr,
            )
        else:
            receipt = self._fail(
                context,
                stderr or f"'{display}' exited with code {result.returncode}",
                command=display,
                return_code=result.returncode,
                stdout=output,
            )
        receipt.duration_ms = elapsed_ms
        return receipt
