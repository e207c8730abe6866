"""
Settings loader — reads updater.yml into a validated Settings model.

Every field has a default matching a stock Nexus image, so a missing
config file is normal. An explicitly named file that is missing or
invalid is a ConfigError.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NEXUS_UPDATER_CONFIG"
CONFIG_FILENAME = "updater.yml"

SEARCH_PATHS = (
    Path("/etc/nexus-updater") / CONFIG_FILENAME,
    Path("~/.config/nexus-updater").expanduser() / CONFIG_FILENAME,
)

BASE_DEPENDENCIES = (
    "extra-xdg-menus",
    "bc",
    "dnsutils",
    "libgtk-3-bin",
    "jq",
    "moreutils",
    "exfat-utils",
    "build-essential",
    "autoconf",
    "automake",
    "libtool",
    "checkinstall",
    "git",
)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""


class Settings(BaseModel):
    """Host-level settings for one updater run."""

    src_dir: Path = Path("/usr/local/src/nexus")
    share_dir: Path = Path("/usr/local/share/nexus")
    home_dir: Path = Field(default_factory=Path.home)
    desktop_dir: Path = Path("/usr/local/share/applications")

    swap_file: Path = Path("/etc/dphys-swapfile")
    swap_size_mb: int = 1024
    swap_service: str = "dphys-swapfile"

    self_repo_url: str | None = None
    apt_cache_max_age: int = 3600
    apt_lists_dir: Path = Path("/var/lib/apt/lists")
    base_dependencies: list[str] = Field(default_factory=lambda: list(BASE_DEPENDENCIES))

    connectivity_url: str = "https://github.com"
    check_connectivity: bool = True
    stream_output: bool = True
    build_jobs: int | None = None       # default: nproc
    panel_refresh_command: str = "lxpanelctl restart"
    catalog_path: Path | None = None

    # Owner of src_dir/share_dir; defaults to the invoking (sudo) user
    owner: str | None = None


def find_config_file(explicit: Path | None = None) -> Path | None:
    """Resolve the config file: explicit > env var > system > user."""
    if explicit is not None:
        return explicit
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    for candidate in SEARCH_PATHS:
        if candidate.is_file():
            return candidate
    return None


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit config path (from ``--config``).

    Raises:
        ConfigError: If a named file is missing or any file is invalid.
    """
    path = find_config_file(path)
    if path is None:
        logger.debug("No %s found, using defaults", CONFIG_FILENAME)
        return Settings()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading settings from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    logger.info("Loaded settings from %s", path)
    return settings
