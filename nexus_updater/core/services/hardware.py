"""
Host hardware facts that feed build variables.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

CPUINFO = Path("/proc/cpuinfo")

_PI_MODELS = (
    ("Raspberry Pi 2", "rpi2"),
    ("Raspberry Pi 3", "rpi3"),
    ("Raspberry Pi 4", "rpi4"),
)


def pi_model(cpuinfo: Path = CPUINFO) -> str:
    """``rpi2``/``rpi3``/``rpi4`` from /proc/cpuinfo, or "" on anything else."""
    try:
        text = cpuinfo.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    match = re.search(r"^Model\s*:\s*(.+)$", text, re.MULTILINE)
    if not match:
        return ""
    model = match.group(1).strip()
    for prefix, short in _PI_MODELS:
        if model.startswith(prefix):
            return short
    logger.debug("Unrecognised board model: %s", model)
    return ""


def cpu_count() -> int:
    return os.cpu_count() or 1
