"""
Terminal application picker, used when no applications are named on
the command line.

The operator toggles entries by number or id, ``i`` toggles every
installed application at once, Enter confirms and ``q`` cancels.
"""

from __future__ import annotations

import re
from typing import Callable

import click

from nexus_updater.core.use_cases.catalog import CatalogEntry

PROMPT = "Toggle (numbers or names), i = all installed, Enter = go, q = cancel"


def render(entries: list[CatalogEntry], selected: set[str]) -> None:
    click.secho("\nNexus Updater: select applications to install or update\n", fg="cyan", bold=True)
    width = max((len(e.id) for e in entries), default=0)
    for number, entry in enumerate(entries, start=1):
        mark = "[x]" if entry.id in selected else "[ ]"
        status = "Installed" if entry.installed else "New Install"
        click.echo(f"  {number:>3} {mark} {entry.id:<{width}}  {status:<11}  {entry.description}")
        # help links only for picked entries, the full list stays one screen
        if entry.id in selected and entry.help_url:
            click.secho(f"{'':>{width + 26}}{entry.help_url}", dim=True)
    click.echo()


def pick_applications(
    entries: list[CatalogEntry],
    ask: Callable[[], str] | None = None,
) -> list[str]:
    """Interactive selection; returns chosen ids in catalog order, or []
    when the operator cancels."""
    ask = ask or (lambda: click.prompt(PROMPT, default="", show_default=False))
    by_number = {str(n): e.id for n, e in enumerate(entries, start=1)}
    known = {e.id for e in entries}
    installed = {e.id for e in entries if e.installed}
    selected: set[str] = set()

    while True:
        render(entries, selected)
        answer = ask().strip().lower()
        if answer == "":
            if selected:
                return [e.id for e in entries if e.id in selected]
            click.secho("Nothing selected.", fg="yellow")
            return []
        if answer == "q":
            return []

        for token in re.split(r"[\s,]+", answer):
            if not token:
                continue
            if token == "i":
                if installed <= selected:
                    selected -= installed
                else:
                    selected |= installed
                continue
            app_id = by_number.get(token, token)
            if app_id not in known:
                click.secho(f"Unknown choice: {token}", fg="yellow")
                continue
            selected ^= {app_id}
