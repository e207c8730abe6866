"""
Bundled data files.

``catalog.yml`` is the application catalog shipped with the updater.
A site can point ``catalog_path`` in updater.yml at its own copy.
"""

from __future__ import annotations

from pathlib import Path

DATA_DIR = Path(__file__).parent

CATALOG_FILE = DATA_DIR / "catalog.yml"
