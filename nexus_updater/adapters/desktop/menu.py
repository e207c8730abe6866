"""
Desktop menu adapter — tweak ``.desktop`` launchers after an install.

Upstream installs drop menu entries the Nexus image does not want
(duplicate categories, helper tools nobody launches from the menu).
Entries live under /usr/local/share/applications and are root-owned,
so writes fall back to ``sudo tee`` when a plain write is refused.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
from pathlib import Path

from nexus_updater.adapters.base import Adapter, ExecutionContext
from nexus_updater.adapters.shell.command import with_sudo
from nexus_updater.core.models.action import Receipt

logger = logging.getLogger(__name__)


class DesktopMenuAdapter(Adapter):
    """Desktop entry operations.

    Action params:
        operation (str): 'disable', 'edit', 'write' or 'refresh'.
        file (str): Desktop entry path.
        pattern / replacement (str): Regex substitution (for 'edit').
        content (str): Full entry text (for 'write').
    """

    operations = frozenset({"disable", "edit", "write", "refresh"})

    def __init__(self, panel_command: str = "lxpanelctl restart"):
        self._panel_command = panel_command

    @property
    def name(self) -> str:
        return "desktop"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, err = super().validate(context)
        if not ok:
            return ok, err
        op = context.param("operation")
        if op != "refresh" and not context.param("file"):
            return False, f"Missing required param: 'file' for {op}"
        if op == "edit" and context.param("pattern") is None:
            return False, "Missing required param: 'pattern' for edit"
        if op == "write" and context.param("content") is None:
            return False, "Missing required param: 'content' for write"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.param("operation")
        try:
            return getattr(self, f"_{operation}")(context)
        except (OSError, re.error, subprocess.SubprocessError) as e:
            return self._fail(context, f"desktop {operation} failed: {e}")

    # ── Operations ──────────────────────────────────────────────

    def _disable(self, ctx: ExecutionContext) -> Receipt:
        path = Path(ctx.param("file"))
        if not path.exists():
            return self._ok(ctx, f"{path} not present", changed=False)
        target = path.with_name(path.name + ".disabled")
        self._privileged(["mv", "-f", str(path), str(target)], path)
        return self._ok(ctx, str(target), changed=True)

    def _edit(self, ctx: ExecutionContext) -> Receipt:
        path = Path(ctx.param("file"))
        if not path.is_file():
            return self._ok(ctx, f"{path} not present", changed=False)
        before = path.read_text(encoding="utf-8")
        after = re.sub(ctx.param("pattern"), ctx.param("replacement", ""), before, flags=re.MULTILINE)
        if after == before:
            return self._ok(ctx, "", changed=False)
        self._write_file(path, after)
        return self._ok(ctx, str(path), changed=True)

    def _write(self, ctx: ExecutionContext) -> Receipt:
        path = Path(ctx.param("file"))
        content = ctx.param("content")
        if path.is_file() and path.read_text(encoding="utf-8") == content:
            return self._ok(ctx, "", changed=False)
        self._write_file(path, content)
        return self._ok(ctx, str(path), changed=True)

    def _refresh(self, ctx: ExecutionContext) -> Receipt:
        argv = shlex.split(self._panel_command)
        if not argv or shutil.which(argv[0]) is None:
            return Receipt.skip(
                adapter=self.name,
                action_id=ctx.action.id,
                reason=f"{self._panel_command!r} not available",
            )
        result = subprocess.run(argv, capture_output=True, text=True, timeout=30)
        if result.returncode != 0:
            return self._fail(ctx, result.stderr.strip() or f"{argv[0]} exited {result.returncode}")
        return self._ok(ctx, result.stdout.strip())

    # ── Helpers ─────────────────────────────────────────────────

    def _write_file(self, path: Path, text: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            return
        except PermissionError:
            logger.debug("Writing %s with sudo", path)
        subprocess.run(
            with_sudo(["mkdir", "-p", str(path.parent)]),
            capture_output=True,
            check=True,
            timeout=30,
        )
        subprocess.run(
            with_sudo(["tee", str(path)]),
            input=text,
            capture_output=True,
            text=True,
            check=True,
            timeout=30,
        )

    def _privileged(self, argv: list[str], path: Path) -> None:
        cmd = argv
        if not _writable(path.parent):
            cmd = with_sudo(argv)
        subprocess.run(cmd, capture_output=True, check=True, timeout=30)


def _writable(directory: Path) -> bool:
    return os.access(directory, os.W_OK)
