"""
Exit guard — cleanup that runs on every way out of the process.

Installed once by the CLI. Components register undo callbacks (remove
the scratch root, put the swap size back) and discard them again when
they finish normally. Whatever is still registered runs exactly once,
newest first, on normal exit, on an unhandled exception, on Ctrl-C
and on SIGTERM.
"""

from __future__ import annotations

import atexit
import itertools
import logging
import signal
from typing import Callable

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ExitGuard:
    """LIFO registry of cleanup callbacks."""

    def __init__(self) -> None:
        self._callbacks: dict[int, tuple[str, Callable[[], None]]] = {}
        self._ids = itertools.count(1)
        self._installed = False
        self._previous: dict[int, object] = {}

    @property
    def pending(self) -> list[str]:
        """Names of callbacks that would run now, in run order."""
        return [name for name, _ in reversed(list(self._callbacks.values()))]

    def register(self, name: str, callback: Callable[[], None]) -> int:
        token = next(self._ids)
        self._callbacks[token] = (name, callback)
        logger.debug("Exit guard: registered %s", name)
        return token

    def discard(self, token: int) -> None:
        self._callbacks.pop(token, None)

    def run(self) -> None:
        """Run and drop every pending callback, newest first.

        A failing callback is logged and the rest still run.
        """
        while self._callbacks:
            token = max(self._callbacks)
            name, callback = self._callbacks.pop(token)
            logger.debug("Exit guard: running %s", name)
            try:
                callback()
            except Exception as e:
                logger.error("Cleanup '%s' failed: %s", name, e)

    # ── Process hooks ───────────────────────────────────────────

    def install(self) -> None:
        """Hook atexit and SIGINT/SIGTERM. Safe to call more than once."""
        if self._installed:
            return
        atexit.register(self.run)
        for sig in _SIGNALS:
            self._previous[sig] = signal.signal(sig, self._on_signal)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        atexit.unregister(self.run)
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()
        self._installed = False

    def _on_signal(self, signum, frame) -> None:
        logger.warning("Interrupted (%s), cleaning up", signal.Signals(signum).name)
        self.run()
        # 130 for Ctrl-C, 143 for SIGTERM
        raise SystemExit(128 + signum)
