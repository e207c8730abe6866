"""
Catalog loader — reads the application catalog YAML into a Catalog.

Expected shape::

    dependency_groups:
      fldigi-suite:
        packages: [libfltk1.3-dev, ...]
        enable_source_repos: true
        prerequisites: [hamlib]

    applications:
      fldigi:
        description: Fast Light Digital modem program
        version: {strategy: git_repo}
        source: {kind: git, url: git://git.code.sf.net/p/fldigi/fldigi}
        recipe: {build_system: autotools, ...}

Cross references (groups, prerequisites, components) are checked here,
so the engine can look them up without guarding against typos.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from nexus_updater.core.config.loader import ConfigError
from nexus_updater.core.data import CATALOG_FILE
from nexus_updater.core.models.application import ApplicationSpec, Catalog, DependencyGroup

logger = logging.getLogger(__name__)


def load_catalog(path: Path | None = None) -> Catalog:
    """Load and validate the application catalog.

    Args:
        path: Catalog file (default: the bundled catalog.yml).

    Raises:
        ConfigError: If the file is missing, malformed, or inconsistent.
    """
    path = path or CATALOG_FILE
    if not path.is_file():
        raise ConfigError(f"Catalog not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot load catalog {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}")

    catalog = parse_catalog(data, source=str(path))
    logger.debug("Loaded %d applications from %s", len(catalog.applications), path)
    return catalog


def parse_catalog(data: dict, source: str = "<catalog>") -> Catalog:
    """Build a Catalog from already-parsed YAML data."""
    groups: dict[str, DependencyGroup] = {}
    for name, body in (data.get("dependency_groups") or {}).items():
        try:
            groups[name] = DependencyGroup.model_validate({"name": name, **(body or {})})
        except ValidationError as e:
            raise ConfigError(f"{source}: invalid dependency group '{name}': {e}") from e

    apps: dict[str, ApplicationSpec] = {}
    for app_id, body in (data.get("applications") or {}).items():
        key = str(app_id)
        if key.lower() in apps:
            raise ConfigError(f"{source}: duplicate application id '{key}'")
        try:
            apps[key.lower()] = ApplicationSpec.model_validate({"id": key, **(body or {})})
        except ValidationError as e:
            raise ConfigError(f"{source}: invalid application '{key}': {e}") from e

    errors = _check_references(apps, groups)
    if errors:
        raise ConfigError(f"{source}: " + "; ".join(errors))

    return Catalog(applications=apps, dependency_groups=groups)


def _check_references(
    apps: dict[str, ApplicationSpec],
    groups: dict[str, DependencyGroup],
) -> list[str]:
    errors: list[str] = []
    for group in groups.values():
        for pre in group.prerequisites:
            if pre.app not in apps:
                errors.append(f"group '{group.name}' requires unknown application '{pre.app}'")

    for app in apps.values():
        for name in app.dependency_groups:
            if name not in groups:
                errors.append(f"'{app.id}' uses unknown dependency group '{name}'")
        for pre in app.prerequisites:
            if pre.app not in apps:
                errors.append(f"'{app.id}' requires unknown application '{pre.app}'")
            elif pre.app == app.id:
                errors.append(f"'{app.id}' lists itself as a prerequisite")
        for comp in app.components:
            target = apps.get(comp)
            if target is None:
                errors.append(f"'{app.id}' has unknown component '{comp}'")
            elif target.is_composite:
                errors.append(f"'{app.id}' component '{comp}' is itself composite")
    return errors
