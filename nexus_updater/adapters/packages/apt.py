"""
Apt adapter — the Debian package database.

Query operations (installed_version, candidate_version, missing,
cache_age) never need root. Mutating operations run through sudo
unless the process is already root, with ``DEBIAN_FRONTEND`` set so
apt never stops to ask questions mid-run.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import time
import urllib.request
from pathlib import Path

from nexus_updater.adapters.base import Adapter, ExecutionContext
from nexus_updater.adapters.shell.command import with_sudo
from nexus_updater.core.models.action import Receipt

logger = logging.getLogger(__name__)

APT_LISTS_DIR = "/var/lib/apt/lists"
SOURCES_LIST = "/etc/apt/sources.list"
SOURCES_DIR = "/etc/apt/sources.list.d"
KEYRING_DIR = "/usr/share/keyrings"

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptAdapter(Adapter):
    """Apt/dpkg operations.

    Action params:
        operation (str): see ``operations``.
        package (str): Single package (installed_version, candidate_version).
        packages (list[str]): Package batch (missing, install, remove, hold).
        reinstall (bool): Reinstall even if present (install).
        file (str): Local .deb (register_deb).
        command (list[str]): Install command to wrap (checkinstall).
        name / version (str): Package name and version (checkinstall).
        cwd (str): Working directory (checkinstall).
        repository (dict): ``name``, ``line``, ``key_url`` (add_repository).
        lists_dir (str): Apt lists directory (cache_age).
    """

    operations = frozenset({
        "installed_version",
        "candidate_version",
        "missing",
        "install",
        "remove",
        "hold",
        "upgrade",
        "update",
        "cache_age",
        "register_deb",
        "checkinstall",
        "add_repository",
        "enable_sources",
    })

    @property
    def name(self) -> str:
        return "apt"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, err = super().validate(context)
        if not ok:
            return ok, err
        op = context.param("operation")
        if op in ("installed_version", "candidate_version") and not context.param("package"):
            return False, f"Missing required param: 'package' for {op}"
        if op in ("missing", "install", "remove", "hold") and not context.param("packages"):
            return False, f"Missing required param: 'packages' for {op}"
        if op == "register_deb" and not context.param("file"):
            return False, "Missing required param: 'file' for register_deb"
        if op == "checkinstall" and not (context.param("command") and context.param("name")):
            return False, "checkinstall needs 'command' and 'name'"
        if op == "add_repository" and not context.param("repository"):
            return False, "Missing required param: 'repository'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.param("operation")
        try:
            return getattr(self, f"_{operation}")(context)
        except subprocess.TimeoutExpired as e:
            return self._fail(context, f"{operation} timed out after {e.timeout}s")
        except Exception as e:
            return self._fail(context, f"apt error: {e}")

    # ── Queries ─────────────────────────────────────────────────

    def _installed_version(self, ctx: ExecutionContext) -> Receipt:
        package = ctx.param("package")
        result = subprocess.run(
            ["dpkg-query", "-W", "-f=${db:Status-Status} ${Version}", package],
            capture_output=True,
            text=True,
            timeout=30,
        )
        status, _, version = result.stdout.strip().partition(" ")
        if result.returncode != 0 or status != "installed":
            return self._ok(ctx, "", installed=False, version=None)
        return self._ok(ctx, version, installed=True, version=version)

    def _candidate_version(self, ctx: ExecutionContext) -> Receipt:
        package = ctx.param("package")
        result = subprocess.run(
            ["apt-cache", "policy", package],
            capture_output=True,
            text=True,
            timeout=60,
        )
        if result.returncode != 0:
            return self._fail(ctx, result.stderr.strip() or f"apt-cache policy {package} failed")
        candidate = None
        for line in result.stdout.splitlines():
            line = line.strip()
            if line.startswith("Candidate:"):
                value = line.split(":", 1)[1].strip()
                candidate = None if value == "(none)" else value
                break
        return self._ok(ctx, candidate or "", version=candidate)

    def _missing(self, ctx: ExecutionContext) -> Receipt:
        packages = list(ctx.param("packages"))
        # Exit status is non-zero when any package is unknown; parse stdout anyway
        result = subprocess.run(
            ["dpkg-query", "-W", "-f=${Package} ${db:Status-Status}\n", *packages],
            capture_output=True,
            text=True,
            timeout=60,
        )
        installed = set()
        for line in result.stdout.splitlines():
            name, _, status = line.strip().partition(" ")
            if status == "installed":
                installed.add(name.split(":", 1)[0])
        missing = [p for p in packages if p.split(":", 1)[0] not in installed]
        return self._ok(ctx, " ".join(missing), missing=missing)

    def _cache_age(self, ctx: ExecutionContext) -> Receipt:
        lists = Path(ctx.param("lists_dir", APT_LISTS_DIR))
        newest = 0.0
        if lists.is_dir():
            for entry in lists.iterdir():
                if entry.is_file():
                    newest = max(newest, entry.stat().st_mtime)
        age = int(time.time() - newest) if newest else None
        return self._ok(ctx, str(age if age is not None else ""), age_seconds=age)

    # ── Mutations ───────────────────────────────────────────────

    def _install(self, ctx: ExecutionContext) -> Receipt:
        cmd = ["apt-get", "install", "-y"]
        if ctx.param("reinstall"):
            cmd.append("--reinstall")
        return self._sudo(ctx, cmd + list(ctx.param("packages")))

    def _remove(self, ctx: ExecutionContext) -> Receipt:
        return self._sudo(ctx, ["apt-get", "remove", "-y", *ctx.param("packages")])

    def _hold(self, ctx: ExecutionContext) -> Receipt:
        return self._sudo(ctx, ["apt-mark", "hold", *ctx.param("packages")])

    def _update(self, ctx: ExecutionContext) -> Receipt:
        return self._sudo(ctx, ["apt-get", "update"])

    def _upgrade(self, ctx: ExecutionContext) -> Receipt:
        return self._sudo(ctx, ["apt-get", "-m", "-y", "upgrade"], stream=True)

    def _register_deb(self, ctx: ExecutionContext) -> Receipt:
        receipt = self._sudo(ctx, ["dpkg", "-i", ctx.param("file")])
        if receipt.ok:
            return receipt
        # dpkg leaves the package half-configured when dependencies are missing
        logger.info("dpkg -i failed, letting apt resolve dependencies")
        return self._sudo(ctx, ["apt-get", "-f", "-y", "install"])

    def _checkinstall(self, ctx: ExecutionContext) -> Receipt:
        cmd = [
            "checkinstall",
            "-D",
            "-y",
            f"--pkgname={ctx.param('name')}",
            f"--pkgversion={ctx.param('version') or '1.0'}",
            "--backup=no",
            "--fstrans=no",
            "--deldoc=yes",
            "--deldesc=yes",
            *ctx.param("command"),
        ]
        return self._sudo(ctx, cmd, cwd=ctx.param("cwd"))

    def _enable_sources(self, ctx: ExecutionContext) -> Receipt:
        path = Path(ctx.param("sources_list", SOURCES_LIST))
        before = path.read_text(encoding="utf-8") if path.is_file() else ""
        receipt = self._sudo(
            ctx,
            ["sed", "-i", "-e", r"s/^#[[:space:]]*deb-src/deb-src/", str(path)],
        )
        if receipt.ok:
            after = path.read_text(encoding="utf-8") if path.is_file() else ""
            receipt.metadata["changed"] = before != after
        return receipt

    def _add_repository(self, ctx: ExecutionContext) -> Receipt:
        repo = ctx.param("repository")
        name = repo["name"]
        sources_dir = Path(ctx.param("sources_dir", SOURCES_DIR))
        list_file = sources_dir / f"{name}.list"
        line = repo["line"]

        if repo.get("key_url"):
            keyring = Path(KEYRING_DIR) / f"{name}.gpg"
            with tempfile.TemporaryDirectory(prefix="nexus-key.") as tmp:
                key_file = Path(tmp) / "key.asc"
                with urllib.request.urlopen(repo["key_url"], timeout=30) as resp:
                    key_file.write_bytes(resp.read())
                receipt = self._sudo(
                    ctx,
                    ["gpg", "--batch", "--yes", "--dearmor", "-o", str(keyring), str(key_file)],
                )
            if not receipt.ok:
                return receipt
            line = line.replace("deb ", f"deb [signed-by={keyring}] ", 1)

        if list_file.is_file() and list_file.read_text(encoding="utf-8").strip() == line:
            return self._ok(ctx, f"{list_file} already present", changed=False)

        result = subprocess.run(
            with_sudo(["tee", str(list_file)]),
            input=line + "\n",
            capture_output=True,
            text=True,
            timeout=30,
        )
        if result.returncode != 0:
            return self._fail(ctx, result.stderr.strip() or f"Cannot write {list_file}")
        return self._ok(ctx, str(list_file), changed=True)

    # ── Helpers ─────────────────────────────────────────────────

    def _sudo(
        self,
        ctx: ExecutionContext,
        cmd: list[str],
        cwd: str | None = None,
        stream: bool = False,
    ) -> Receipt:
        env = os.environ.copy()
        env.update(_APT_ENV)
        argv = cmd
        if os.geteuid() != 0:
            # sudo resets the environment; pass the frontend through explicitly
            argv = ["sudo", "DEBIAN_FRONTEND=noninteractive", *cmd]
        logger.debug("apt: %s", " ".join(argv))

        stream = stream or ctx.stream_output
        timeout = ctx.param("timeout", 3600)
        if stream:
            result = subprocess.run(argv, cwd=cwd, env=env, timeout=timeout)
            stdout, stderr = "", ""
        else:
            result = subprocess.run(
                argv,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
            stdout, stderr = result.stdout.strip(), result.stderr.strip()

        if result.returncode != 0:
            return self._fail(
                ctx,
                stderr or f"{cmd[0]} exited with code {result.returncode}",
                return_code=result.returncode,
                stdout=stdout,
            )
        return self._ok(ctx, stdout, return_code=0)
