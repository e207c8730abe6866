"""
Builder/Installer — turn an acquired artifact into an installed app.

Stages run strictly in order:

    fetched -> dependencies_satisfied -> configured -> built
            -> installed -> desktop_integrated

A failure at any stage stops the machine and is reported with the
stage it happened in. Packages an application replaces are only
removed after its own build succeeded, so a broken compile never
leaves the operator without the packaged version. Desktop problems
are warnings; they never fail an install.
"""

from __future__ import annotations

import glob
import logging
import re
import shlex
from contextlib import nullcontext
from pathlib import Path

from nexus_updater.core.context import AppJob, RunContext
from nexus_updater.core.engine.build_strategies import (
    INSTALL_APT,
    INSTALL_APT_UPGRADE,
    INSTALL_DEB,
    BuildPlan,
    plan_for,
)
from nexus_updater.core.engine.dependencies import ensure_dependencies
from nexus_updater.core.engine.errors import (
    BuildFailure,
    InstallFailure,
    UpdaterError,
)
from nexus_updater.core.engine.workspace import clear
from nexus_updater.core.models.application import ApplicationSpec, BuildSystem, RecipeStep
from nexus_updater.core.models.probe import Artifact, BuildStage, InstallResult

logger = logging.getLogger(__name__)

_GLOB_CHARS = re.compile(r"[*?\[]")


class Builder:
    def build(
        self,
        artifact: Artifact,
        app: ApplicationSpec,
        ctx: RunContext,
        job: AppJob,
    ) -> InstallResult:
        """Run ``app``'s recipe against ``artifact``. Never raises."""
        result = InstallResult(app_id=app.id)
        if job.source_dir is None and artifact.source_dir is not None:
            job.source_dir = Path(artifact.source_dir)
        if app.recipe.workdir and job.source_dir is not None:
            job.source_dir = job.source_dir / app.recipe.workdir

        extra = {
            "version": artifact.version,
            "file": str(artifact.file) if artifact.file else None,
        }

        try:
            plan = plan_for(app.recipe, artifact, job.force)
            ensure_dependencies(app, ctx)
            result.stage = BuildStage.DEPENDENCIES_SATISFIED

            swap = ctx.swap.enlarged(app.id) if app.recipe.enlarge_swap else nullcontext()
            with swap:
                self._run_steps(plan.bootstrap + plan.configure, "configure", BuildFailure,
                                app, ctx, job, result, extra)
                result.stage = BuildStage.CONFIGURED

                self._run_steps(plan.build, "build", BuildFailure, app, ctx, job, result, extra)
                result.stage = BuildStage.BUILT

                self._run_steps(list(app.recipe.pre_install), "pre_install", InstallFailure,
                                app, ctx, job, result, extra)
                self._replace_packages(app, ctx)
                self._install(plan, artifact, app, ctx, job, result, extra)
                self._run_steps(list(app.recipe.post_install), "post_install", InstallFailure,
                                app, ctx, job, result, extra)
            result.stage = BuildStage.INSTALLED
        except UpdaterError as e:
            result.failed_stage = e.stage or result.stage.value
            result.error = str(e)
            result.error_kind = e.kind
            logger.error("%s: %s", app.id, e)
            if isinstance(e, (BuildFailure, InstallFailure)) and artifact.kind == "git":
                # a half-built tree breaks the next incremental build
                logger.info("Removing source tree %s", artifact.source_dir)
                clear(Path(artifact.source_dir))
            return result

        result.warnings.extend(self._integrate_desktop(app, ctx, job, extra))
        result.stage = BuildStage.DESKTOP_INTEGRATED

        if app.recipe.notice:
            logger.warning("%s: %s", app.id, app.recipe.notice)
            result.warnings.append(app.recipe.notice)
        return result

    # ── Steps ───────────────────────────────────────────────────

    def _run_steps(
        self,
        steps: list[RecipeStep],
        stage: str,
        error_cls: type[UpdaterError],
        app: ApplicationSpec,
        ctx: RunContext,
        job: AppJob,
        result: InstallResult,
        extra: dict,
    ) -> None:
        for i, step in enumerate(steps):
            command, cwd = self._expand_step(step, stage, error_cls, app, ctx, job, extra)
            logger.info("%s [%s]: %s", app.id, stage, command)
            receipt = ctx.call(
                "shell",
                "run",
                app_id=app.id,
                tag=f"{stage}.{i}",
                command=command,
                sudo=step.sudo,
                cwd=cwd,
            )
            if receipt.ok:
                continue
            if step.optional:
                warning = f"{stage} step '{command}' failed: {receipt.error}"
                logger.warning("%s: %s", app.id, warning)
                result.warnings.append(warning)
                continue
            raise error_cls(f"{stage} step '{command}' failed: {receipt.error}", app.id, stage)

    @staticmethod
    def _expand_step(
        step: RecipeStep,
        stage: str,
        error_cls: type[UpdaterError],
        app: ApplicationSpec,
        ctx: RunContext,
        job: AppJob,
        extra: dict,
    ) -> tuple[str, str]:
        try:
            command = ctx.expand(step.run, job, **extra)
            base = job.source_dir or job.workspace
            cwd = base / ctx.expand(step.cwd, job, **extra) if step.cwd else base
        except (KeyError, IndexError, ValueError) as e:
            raise error_cls(f"{stage} step {step.run!r} uses an unknown variable: {e}",
                            app.id, stage) from e
        return command, str(cwd)

    # ── Install ─────────────────────────────────────────────────

    def _replace_packages(self, app: ApplicationSpec, ctx: RunContext) -> None:
        recipe = app.recipe
        if recipe.replaces_packages:
            receipt = ctx.call("apt", "missing", app_id=app.id, tag="missing.replaced",
                               packages=list(recipe.replaces_packages))
            if not receipt.ok:
                raise InstallFailure(f"Cannot query packages to replace: {receipt.error}", app.id, "install")
            missing = set(receipt.metadata.get("missing", []))
            present = [p for p in recipe.replaces_packages if p not in missing]
            if present:
                logger.info("Removing packaged %s", " ".join(present))
                receipt = ctx.call("apt", "remove", app_id=app.id, packages=present)
                if not receipt.ok:
                    raise InstallFailure(f"apt-get remove {' '.join(present)} failed: {receipt.error}",
                                         app.id, "install")
        if recipe.hold_packages:
            receipt = ctx.call("apt", "hold", app_id=app.id, packages=list(recipe.hold_packages))
            if not receipt.ok:
                raise InstallFailure(f"apt-mark hold failed: {receipt.error}", app.id, "install")

    def _install(
        self,
        plan: BuildPlan,
        artifact: Artifact,
        app: ApplicationSpec,
        ctx: RunContext,
        job: AppJob,
        result: InstallResult,
        extra: dict,
    ) -> None:
        if plan.install_kind == INSTALL_DEB:
            if artifact.file is None:
                raise InstallFailure("No package file to install", app.id, "install")
            receipt = ctx.call("apt", "register_deb", app_id=app.id, file=str(artifact.file))
            if not receipt.ok:
                raise InstallFailure(f"Installing {artifact.file.name} failed: {receipt.error}",
                                     app.id, "install")
            return

        if plan.install_kind == INSTALL_APT:
            self._install_apt(app, ctx, job.force)
            return

        if plan.install_kind == INSTALL_APT_UPGRADE:
            receipt = ctx.call("apt", "upgrade", app_id=app.id)
            if not receipt.ok:
                raise InstallFailure(f"apt-get upgrade failed: {receipt.error}", app.id, "install")
            return

        if app.recipe.register_package:
            self._checkinstall(plan.install, artifact, app, ctx, job, extra)
            return

        self._run_steps(plan.install, "install", InstallFailure, app, ctx, job, result, extra)

    def _install_apt(self, app: ApplicationSpec, ctx: RunContext, reinstall: bool) -> None:
        repo = app.recipe.apt_repository
        if repo is not None:
            receipt = ctx.call("apt", "add_repository", app_id=app.id,
                               repository=repo.model_dump())
            if not receipt.ok:
                raise InstallFailure(f"Cannot add the {repo.name} repository: {receipt.error}",
                                     app.id, "install")
            if receipt.metadata.get("changed"):
                receipt = ctx.call("apt", "update", app_id=app.id)
                if not receipt.ok:
                    raise InstallFailure(f"apt-get update failed: {receipt.error}", app.id, "install")

        package = app.version.package or app.id
        receipt = ctx.call("apt", "install", app_id=app.id, packages=[package], reinstall=reinstall)
        if not receipt.ok:
            raise InstallFailure(f"apt-get install {package} failed: {receipt.error}", app.id, "install")

    def _checkinstall(
        self,
        steps: list[RecipeStep],
        artifact: Artifact,
        app: ApplicationSpec,
        ctx: RunContext,
        job: AppJob,
        extra: dict,
    ) -> None:
        """Run install steps under checkinstall so dpkg knows the files."""
        version = artifact.version or ""
        if not version[:1].isdigit():
            # dpkg versions must start with a digit; git heads do not
            version = f"0+git{version[:8]}" if version else "0"
        for i, step in enumerate(steps):
            command, cwd = self._expand_step(step, "install", InstallFailure, app, ctx, job, extra)
            receipt = ctx.call(
                "apt",
                "checkinstall",
                app_id=app.id,
                tag=f"checkinstall.{i}",
                name=app.id,
                version=version,
                command=shlex.split(command),
                cwd=cwd,
            )
            if not receipt.ok:
                raise InstallFailure(f"checkinstall '{command}' failed: {receipt.error}", app.id, "install")

    # ── Desktop ─────────────────────────────────────────────────

    def _integrate_desktop(
        self,
        app: ApplicationSpec,
        ctx: RunContext,
        job: AppJob,
        extra: dict,
    ) -> list[str]:
        desktop = app.recipe.desktop
        warnings: list[str] = []

        def _call(operation: str, tag: str, **params) -> None:
            receipt = ctx.call("desktop", operation, app_id=app.id, tag=tag, **params)
            if receipt.failed:
                target = params.get("file") or operation
                warning = f"desktop {operation} {target}: {receipt.error}"
                logger.warning("%s: %s", app.id, warning)
                warnings.append(warning)

        try:
            for i, edit in enumerate(desktop.edits):
                for path in self._paths(ctx.expand(edit.file, job, **extra)):
                    _call("edit", f"edit.{i}", file=path, pattern=edit.pattern,
                          replacement=edit.replacement)
            for i, entry in enumerate(desktop.entries):
                _call("write", f"write.{i}", file=ctx.expand(entry.file, job, **extra),
                      content=entry.content)
            for i, name in enumerate(desktop.disable):
                for path in self._paths(ctx.expand(name, job, **extra)):
                    _call("disable", f"disable.{i}", file=path)
        except (KeyError, IndexError, ValueError) as e:
            warnings.append(f"desktop integration skipped, unknown variable: {e}")
            logger.warning("%s: %s", app.id, warnings[-1])

        if desktop.refresh and not (desktop.empty and app.recipe.build_system == BuildSystem.NONE):
            _call("refresh", "refresh")
        return warnings

    @staticmethod
    def _paths(pattern: str) -> list[str]:
        """Glob-expanded paths; a plain path is returned even if absent."""
        if _GLOB_CHARS.search(pattern):
            return sorted(glob.glob(pattern))
        return [pattern]
