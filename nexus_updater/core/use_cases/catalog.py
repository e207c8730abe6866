"""
Catalog use case — what can be installed, and what already is.
"""

from __future__ import annotations

from dataclasses import dataclass

from nexus_updater.core.context import RunContext
from nexus_updater.core.models.application import Catalog
from nexus_updater.core.services import presence


@dataclass
class CatalogEntry:
    id: str
    description: str
    help_url: str | None = None
    installed: bool | None = None       # None: not checked

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "help_url": self.help_url,
            "installed": self.installed,
        }


def list_applications(catalog: Catalog) -> list[CatalogEntry]:
    """Visible catalog entries, sorted by id."""
    return [
        CatalogEntry(id=app.id, description=app.description, help_url=app.help_url)
        for app in catalog.visible()
    ]


def application_status(ctx: RunContext) -> list[CatalogEntry]:
    """Visible entries with the local Installed / New Install marker."""
    entries = list_applications(ctx.catalog)
    for entry in entries:
        entry.installed = presence.is_present(ctx.catalog.get(entry.id), ctx)
    return entries
