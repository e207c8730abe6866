"""
Swap file management for large compiles.

fldigi and friends do not link on a Pi with the stock 100 MB swap.
``SwapManager.enlarged()`` raises CONF_SWAPSIZE in the dphys-swapfile
config for the duration of a build and puts the original value back in
``finally``. The restore is also registered with the exit guard so a
Ctrl-C or SIGTERM mid-build still leaves the config as it was.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from nexus_updater.core.engine.cleanup import ExitGuard
from nexus_updater.core.models.action import Receipt

logger = logging.getLogger(__name__)

_SWAP_LINE = re.compile(r"^CONF_SWAPSIZE=(.*)$", re.MULTILINE)

ActionCall = Callable[..., Receipt]


class SwapManager:
    def __init__(
        self,
        call: ActionCall,
        swap_file: Path,
        size_mb: int,
        service: str = "dphys-swapfile",
        guard: ExitGuard | None = None,
    ):
        self._call = call
        self._swap_file = swap_file
        self._size = str(size_mb)
        self._service = service
        self._guard = guard

    def current(self) -> str | None:
        """Configured CONF_SWAPSIZE, or None when not managed by dphys-swapfile."""
        try:
            text = self._swap_file.read_text(encoding="utf-8")
        except OSError:
            return None
        match = _SWAP_LINE.search(text)
        return match.group(1).strip() if match else None

    @contextmanager
    def enlarged(self, app_id: str = "") -> Iterator[None]:
        original = self.current()
        if original is None or original == self._size:
            yield
            return

        logger.info("Setting larger swap size (%s MB)", self._size)
        if not self._set_size(self._size, app_id):
            logger.warning("Could not enlarge swap; building with %s MB", original)
            yield
            return

        # the config now says the larger size even if the restart below fails
        restored = False

        def restore() -> None:
            nonlocal restored
            if restored:
                return
            restored = True
            logger.info("Restoring original swap size (%s MB)", original)
            if self._set_size(original, app_id):
                self._restart(app_id)

        token = self._guard.register("restore swap size", restore) if self._guard else None
        try:
            if not self._restart(app_id):
                logger.warning("Swap size raised but %s did not restart", self._service)
            yield
        finally:
            restore()
            if token is not None:
                self._guard.discard(token)

    def _set_size(self, size: str, app_id: str) -> bool:
        receipt = self._call(
            "shell",
            "run",
            app_id=app_id,
            tag="swap.set",
            command=["sed", "-i", "-e", f"s/^CONF_SWAPSIZE=.*/CONF_SWAPSIZE={size}/", str(self._swap_file)],
            sudo=True,
            stream=False,
        )
        if not receipt.ok:
            logger.error("Cannot set swap size to %s: %s", size, receipt.error)
        return receipt.ok

    def _restart(self, app_id: str) -> bool:
        receipt = self._call(
            "shell",
            "run",
            app_id=app_id,
            tag="swap.restart",
            command=["systemctl", "restart", self._service],
            sudo=True,
            stream=False,
        )
        if not receipt.ok:
            logger.error("Cannot restart %s: %s", self._service, receipt.error)
        return receipt.ok
