"""
Cheap "is it installed at all" checks.

Used by the picker's Installed / New Install column, by prerequisites
marked ``only_if_missing`` and to tell Installed from Updated when a
forced run skipped the version probe. Never talks to the network.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from nexus_updater.core.models.application import ApplicationSpec

if TYPE_CHECKING:
    from nexus_updater.core.context import RunContext


def find_binary(name: str) -> Path | None:
    """Path of an executable given by name (PATH lookup) or by path."""
    if "/" in name:
        path = Path(name).expanduser()
        return path if path.is_file() else None
    found = shutil.which(name)
    return Path(found) if found else None


def is_present(app: ApplicationSpec, ctx: RunContext) -> bool:
    presence = app.presence
    if presence.always:
        return True
    if app.is_composite and not (presence.binaries or presence.files or presence.package):
        return any(
            is_present(ctx.catalog.get(cid), ctx)
            for cid in app.components
            if ctx.catalog.get(cid) is not None
        )

    checks: list[bool] = []
    for binary in presence.binaries:
        checks.append(find_binary(ctx.expand(binary)) is not None)
    for name in presence.files:
        checks.append(Path(ctx.expand(name)).expanduser().exists())
    if presence.package:
        receipt = ctx.call("apt", "installed_version", app_id=app.id, package=presence.package)
        checks.append(receipt.ok and bool(receipt.metadata.get("installed")))

    if not checks:
        return find_binary(app.id) is not None
    return all(checks)
