"""
Update use case — one full updater run.

Order of business:
    1. make sure the source and share roots exist and belong to the operator
    2. check that the Internet is reachable
    3. optionally update the updater itself (and stop if it changed)
    4. refresh a stale apt cache and install the base build tools
    5. hand the request to the planner
"""

from __future__ import annotations

import getpass
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from nexus_updater.core.context import RunContext
from nexus_updater.core.engine.dependencies import install_missing
from nexus_updater.core.engine.errors import TransientEnvironmentError, UpdaterError
from nexus_updater.core.engine.planner import UpdatePlanner
from nexus_updater.core.engine.self_update import SelfUpdater, SelfUpdateResult
from nexus_updater.core.models.run import RunReport, RunRequest

logger = logging.getLogger(__name__)


@dataclass
class UpdateResult:
    """Everything the CLI reports about a run."""

    report: RunReport = field(default_factory=RunReport)
    self_update: SelfUpdateResult | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error:
            return 1
        return self.report.exit_code

    def to_dict(self) -> dict:
        result = self.report.to_dict()
        result["exit_code"] = self.exit_code
        if self.self_update is not None:
            result["self_update"] = self.self_update.to_dict()
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
        return result


def run_update(
    ctx: RunContext,
    request: RunRequest,
    planner: UpdatePlanner | None = None,
    self_updater: SelfUpdater | None = None,
) -> UpdateResult:
    """Run the whole update. Never raises for engine failures."""
    planner = planner or UpdatePlanner()
    result = UpdateResult()
    ctx.request = request

    try:
        if not request.dry_run:
            prepare_directories(ctx)
        if ctx.settings.check_connectivity:
            check_connectivity(ctx)

        if request.self_update_check:
            result.self_update = (self_updater or SelfUpdater()).check_self(ctx)
            if result.self_update.updated:
                result.report.self_updated = True
                return result

        if not request.applications:
            return result

        if not request.dry_run:
            refresh_apt_cache(ctx)
            install_missing(ctx, ctx.settings.base_dependencies, "base")

        result.report = planner.run(request, ctx)
    except UpdaterError as e:
        logger.error("%s", e)
        result.error = str(e)
        result.error_kind = e.kind
    finally:
        ctx.workspace.close()

    return result


# ── Run preparation ─────────────────────────────────────────────


def _owner(ctx: RunContext) -> str:
    return ctx.settings.owner or os.environ.get("SUDO_USER") or getpass.getuser()


def _owned_by(path: Path, user: str) -> bool:
    try:
        return path.owner() == user
    except (KeyError, OSError):
        return False


def prepare_directories(ctx: RunContext) -> None:
    """Create the shared roots and hand them to the operator."""
    user = _owner(ctx)
    for path in (ctx.settings.src_dir, ctx.settings.share_dir):
        if not path.is_dir():
            receipt = ctx.call("shell", "run", tag=f"mkdir.{path.name}",
                               command=["mkdir", "-p", str(path)], sudo=True, stream=False)
            if not receipt.ok:
                raise UpdaterError(f"Cannot create {path}: {receipt.error}", stage="prepare")
        if not _owned_by(path, user):
            receipt = ctx.call("shell", "run", tag=f"chown.{path.name}",
                               command=["chown", "-R", f"{user}:{user}", str(path)],
                               sudo=True, stream=False)
            if not receipt.ok:
                raise UpdaterError(f"Cannot give {path} to {user}: {receipt.error}", stage="prepare")


def check_connectivity(ctx: RunContext) -> None:
    url = ctx.settings.connectivity_url
    receipt = ctx.call("http", "reachable", url=url)
    if not receipt.ok:
        raise TransientEnvironmentError(
            f"No Internet connection found ({url}: {receipt.error})", stage="connectivity",
        )


def refresh_apt_cache(ctx: RunContext) -> bool:
    """Run apt-get update when the package lists are older than allowed.

    Returns True when the cache was refreshed.
    """
    receipt = ctx.call("apt", "cache_age", lists_dir=str(ctx.settings.apt_lists_dir))
    age = receipt.metadata.get("age_seconds") if receipt.ok else None
    if age is not None and age <= ctx.settings.apt_cache_max_age:
        logger.debug("apt cache is %ds old, not refreshing", age)
        return False

    logger.info("Updating the apt package cache")
    receipt = ctx.call("apt", "update")
    if not receipt.ok:
        raise TransientEnvironmentError(f"apt-get update failed: {receipt.error}", stage="apt_update")
    return True
