"""
Adapter registry — every host side effect is dispatched from here.

Engines build an ``Action`` and hand it to ``execute_action``; they never
hold an adapter themselves. That single doorway is what lets the test
suite swap git, apt and HTTP for a scripted double.
"""

from __future__ import annotations

import logging
import time

from nexus_updater.adapters.base import Adapter, ExecutionContext
from nexus_updater.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Name → adapter table plus the dispatch that never raises."""

    def __init__(self, stream_output: bool = False):
        self._by_name: dict[str, Adapter] = {}
        self._stream_output = stream_output

    def register(self, adapter: Adapter) -> None:
        if adapter.name in self._by_name:
            logger.warning("Adapter %s registered twice, keeping the newer one", adapter.name)
        self._by_name[adapter.name] = adapter

    def get(self, name: str) -> Adapter | None:
        return self._by_name.get(name)

    def execute_action(self, action: Action) -> Receipt:
        """Run one action and always hand back a Receipt.

        Unknown adapters, rejected parameters and adapter exceptions all
        come back as failed receipts.
        """
        adapter = self._by_name.get(action.adapter)
        if adapter is None:
            return _refused(action, f"No adapter registered for '{action.adapter}'")

        context = ExecutionContext(
            action=action,
            stream_output=self._stream_output,
            params=action.params,
        )

        try:
            accepted, reason = adapter.validate(context)
        except Exception as e:
            return _refused(action, f"Validation error: {e}")
        if not accepted:
            return _refused(action, f"Validation failed: {reason}")

        started = time.monotonic()
        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("%s raised while running %s: %s", action.adapter, action.id, e)
            receipt = _refused(action, f"Unexpected error: {e}")
        receipt.duration_ms = int((time.monotonic() - started) * 1000)
        return receipt


def _refused(action: Action, error: str) -> Receipt:
    return Receipt.failure(adapter=action.adapter, action_id=action.id, error=error)


def default_registry(stream_output: bool = False, panel_command: str = "lxpanelctl restart") -> AdapterRegistry:
    """Registry wired with the real host adapters."""
    from nexus_updater.adapters.desktop.menu import DesktopMenuAdapter
    from nexus_updater.adapters.net.http import HttpAdapter
    from nexus_updater.adapters.packages.apt import AptAdapter
    from nexus_updater.adapters.shell.command import ShellCommandAdapter
    from nexus_updater.adapters.vcs.git import GitAdapter

    registry = AdapterRegistry(stream_output=stream_output)
    for adapter in (
        ShellCommandAdapter(),
        GitAdapter(),
        AptAdapter(),
        HttpAdapter(),
        DesktopMenuAdapter(panel_command=panel_command),
    ):
        registry.register(adapter)
    return registry
