"""
Default recipe steps per build system.

A catalog recipe only spells out the stages it does differently; every
stage it leaves as ``None`` comes from here. An explicit empty list in
the catalog means "nothing to do" for that stage.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from nexus_updater.core.models.application import BuildSystem, Recipe, RecipeStep
from nexus_updater.core.models.probe import Artifact

# Installs that are not shell steps
INSTALL_STEPS = "steps"
INSTALL_DEB = "deb"
INSTALL_APT = "apt"
INSTALL_APT_UPGRADE = "apt_upgrade"

INSTALL_SCRIPT = "nexus-install"


@dataclass
class BuildPlan:
    bootstrap: list[RecipeStep] = field(default_factory=list)
    configure: list[RecipeStep] = field(default_factory=list)
    build: list[RecipeStep] = field(default_factory=list)
    install: list[RecipeStep] = field(default_factory=list)
    install_kind: str = INSTALL_STEPS


def _step(run: str, **kw) -> RecipeStep:
    return RecipeStep(run=run, **kw)


def _autotools(recipe: Recipe, artifact: Artifact, force: bool) -> BuildPlan:
    build = []
    if force and recipe.clean_on_force:
        build.append(_step("make clean", optional=True))
    build.append(_step("make -j{nproc}"))
    return BuildPlan(
        # release tarballs ship a generated configure script
        bootstrap=[_step("autoreconf -f -i")] if artifact.kind == "git" else [],
        configure=[_step(f"./configure {recipe.configure_args}".rstrip())],
        build=build,
        install=[_step("make install", sudo=True)],
    )


def _cmake(recipe: Recipe, artifact: Artifact, force: bool) -> BuildPlan:
    build = []
    if force and recipe.clean_on_force:
        build.append(_step("make clean", cwd="build", optional=True))
    build.append(_step("make -j{nproc}", cwd="build"))
    return BuildPlan(
        configure=[
            _step("mkdir -p build && rm -f build/CMakeCache.txt"),
            _step(f"cmake .. {recipe.configure_args}".rstrip(), cwd="build"),
        ],
        build=build,
        install=[_step("make install", cwd="build", sudo=True)],
    )


def _script(recipe: Recipe, artifact: Artifact, force: bool) -> BuildPlan:
    install = []
    if artifact.source_dir is not None:
        script = Path(artifact.source_dir) / INSTALL_SCRIPT
        if script.is_file() and os.access(script, os.X_OK):
            install.append(_step(f"./{INSTALL_SCRIPT}"))
    return BuildPlan(install=install)


def _binary(recipe: Recipe, artifact: Artifact, force: bool) -> BuildPlan:
    return BuildPlan(install=[
        _step(f"install -m 0755 {path} {target}", sudo=True)
        for path, target in zip(artifact.files, recipe.binaries)
    ])


def _python_setup(recipe: Recipe, artifact: Artifact, force: bool) -> BuildPlan:
    return BuildPlan(install=[_step("python3 setup.py install", sudo=True)])


_DEFAULTS = {
    BuildSystem.AUTOTOOLS: _autotools,
    BuildSystem.CMAKE: _cmake,
    BuildSystem.SCRIPT: _script,
    BuildSystem.BINARY: _binary,
    BuildSystem.PYTHON_SETUP: _python_setup,
    BuildSystem.DEB: lambda r, a, f: BuildPlan(install_kind=INSTALL_DEB),
    BuildSystem.APT: lambda r, a, f: BuildPlan(install_kind=INSTALL_APT),
    BuildSystem.APT_UPGRADE: lambda r, a, f: BuildPlan(install_kind=INSTALL_APT_UPGRADE),
    BuildSystem.NONE: lambda r, a, f: BuildPlan(),
}


def plan_for(recipe: Recipe, artifact: Artifact, force: bool = False) -> BuildPlan:
    """Steps for ``recipe``: catalog stages override the build system's."""
    plan = _DEFAULTS[recipe.build_system](recipe, artifact, force)
    for stage in ("bootstrap", "configure", "build", "install"):
        override = getattr(recipe, stage)
        if override is not None:
            setattr(plan, stage, list(override))
            if stage == "install":
                plan.install_kind = INSTALL_STEPS
    return plan
