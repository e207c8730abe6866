"""
Package dependency installation.

Dependencies are installed in one batch: ask apt which of the declared
packages are missing, then install exactly those. Shared dependency
groups (the fldigi suite) are installed at most once per run.
"""

from __future__ import annotations

import logging
from typing import Iterable

from nexus_updater.core.context import RunContext
from nexus_updater.core.engine.errors import DependencyInstallError
from nexus_updater.core.models.application import ApplicationSpec

logger = logging.getLogger(__name__)


def install_missing(ctx: RunContext, packages: Iterable[str], app_id: str = "") -> list[str]:
    """Install whichever of ``packages`` are not installed yet.

    Returns the packages that were installed.

    Raises:
        DependencyInstallError: apt could not be queried or the install failed.
    """
    wanted = list(dict.fromkeys(packages))
    if not wanted:
        return []

    receipt = ctx.call("apt", "missing", app_id=app_id, packages=wanted)
    if not receipt.ok:
        raise DependencyInstallError(
            f"Cannot query installed packages: {receipt.error}", app_id, "dependencies",
        )
    missing = list(receipt.metadata.get("missing", []))
    if not missing:
        return []

    logger.info("Installing missing packages: %s", " ".join(missing))
    receipt = ctx.call("apt", "install", app_id=app_id, tag="install.dependencies", packages=missing)
    if not receipt.ok:
        raise DependencyInstallError(
            f"apt-get install {' '.join(missing)} failed: {receipt.error}", app_id, "dependencies",
        )
    return missing


def ensure_dependencies(app: ApplicationSpec, ctx: RunContext) -> list[str]:
    """Install ``app``'s dependency groups and own dependencies."""
    packages: list[str] = []
    new_groups: list[str] = []
    refresh = False

    for name in app.dependency_groups:
        if name in ctx.installed_groups:
            continue
        group = ctx.catalog.dependency_groups[name]
        if group.enable_source_repos:
            receipt = ctx.call("apt", "enable_sources", app_id=app.id)
            if not receipt.ok:
                raise DependencyInstallError(
                    f"Cannot enable source repositories: {receipt.error}", app.id, "dependencies",
                )
            refresh = refresh or bool(receipt.metadata.get("changed"))
        packages.extend(group.packages)
        new_groups.append(name)

    if refresh:
        receipt = ctx.call("apt", "update", app_id=app.id)
        if not receipt.ok:
            raise DependencyInstallError(f"apt-get update failed: {receipt.error}", app.id, "dependencies")

    packages.extend(app.dependencies)
    installed = install_missing(ctx, packages, app.id)
    ctx.installed_groups.update(new_groups)
    return installed
