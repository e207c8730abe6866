"""
Scratch workspaces.

One private temporary root per run (mode 0700), one directory per
application under it. ``Workspace.open(app_id)`` always removes the
application's directory on the way out, success or failure, so the
next application never sees leftovers.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from nexus_updater.core.engine.cleanup import ExitGuard

logger = logging.getLogger(__name__)


class Workspace:
    def __init__(self, guard: ExitGuard | None = None, base_dir: Path | None = None):
        self._guard = guard
        self._base_dir = base_dir
        self._root: Path | None = None
        self._token: int | None = None

    @property
    def root(self) -> Path:
        if self._root is None:
            # mkdtemp creates the directory 0700
            self._root = Path(tempfile.mkdtemp(prefix="nexus-updater.", dir=self._base_dir))
            if self._guard is not None:
                self._token = self._guard.register("remove scratch root", self.close)
            logger.debug("Scratch root: %s", self._root)
        return self._root

    def path_for(self, app_id: str) -> Path:
        return self.root / app_id

    @contextmanager
    def open(self, app_id: str) -> Iterator[Path]:
        """Fresh scratch directory for ``app_id``, removed on exit."""
        path = self.path_for(app_id)
        clear(path)
        path.mkdir(parents=True)
        try:
            yield path
        finally:
            clear(path)

    def close(self) -> None:
        """Remove the scratch root."""
        if self._root is not None:
            clear(self._root)
            self._root = None
        if self._guard is not None and self._token is not None:
            self._guard.discard(self._token)
            self._token = None


def clear(path: Path) -> None:
    """Remove a file or directory tree if present."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()
