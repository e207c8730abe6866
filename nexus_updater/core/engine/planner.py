"""
UpdatePlanner — walk the request in order and decide, per application,
whether to skip, report up to date, or acquire and build.

Rules:
    - request order is processing order; the first fatal failure halts
      the run and later applications are not touched
    - an application whose latest version is unknown is never reported
      up to date; without --force-reinstall that is a failure
    - prerequisites run before the application that needs them, once
      per run, and are not forced along with it; an app that is both a
      prerequisite and a forced request is processed again when requested
    - composite applications only process their stale components
"""

from __future__ import annotations

import logging

from nexus_updater.core.context import AppJob, RunContext
from nexus_updater.core.engine.acquirer import Acquirer
from nexus_updater.core.engine.builder import Builder
from nexus_updater.core.engine.oracle import VersionOracle
from nexus_updater.core.models.application import ApplicationSpec, Prerequisite, VersionStrategy
from nexus_updater.core.models.probe import AcquireFailure, VersionProbe
from nexus_updater.core.models.run import OutcomeStatus, RunOutcome, RunReport, RunRequest
from nexus_updater.core.services import presence

logger = logging.getLogger(__name__)


class UpdatePlanner:
    def __init__(
        self,
        oracle: VersionOracle | None = None,
        acquirer: Acquirer | None = None,
        builder: Builder | None = None,
    ):
        self.oracle = oracle or VersionOracle()
        self.acquirer = acquirer or Acquirer()
        self.builder = builder or Builder()

    def run(self, request: RunRequest, ctx: RunContext) -> RunReport:
        """Process every requested application; stop at the first fatal failure."""
        ctx.request = request
        report = RunReport()
        for app_id in request.applications:
            outcome = self._handle(app_id, ctx, report, requested=True)
            if outcome.fatal:
                report.halted = True
                report.halted_by = outcome.id
                remaining = request.applications[request.applications.index(app_id) + 1:]
                if remaining:
                    logger.error("Stopping: %s not processed", ", ".join(remaining))
                break
        return report

    # ── Per application ─────────────────────────────────────────

    def _handle(
        self,
        app_id: str,
        ctx: RunContext,
        report: RunReport,
        requested: bool,
        chain: tuple[str, ...] = (),
    ) -> RunOutcome:
        force = ctx.force and requested
        cached = ctx.prerequisite_outcomes.get(app_id)
        # an unforced prerequisite pass does not satisfy a forced request
        if cached is not None and (not force or app_id in ctx.forced_ids):
            return cached

        app = ctx.catalog.get(app_id)
        if app is None:
            logger.warning("Unknown application %r, skipping", app_id)
            return report.add(RunOutcome(id=app_id, status=OutcomeStatus.SKIPPED,
                                         message="unknown application"))

        for prerequisite in self._prerequisites(app, ctx):
            if prerequisite.app in chain:
                continue
            if prerequisite.only_if_missing:
                needed = ctx.catalog.get(prerequisite.app)
                if needed is not None and presence.is_present(needed, ctx):
                    continue
            outcome = self._handle(prerequisite.app, ctx, report, requested=False,
                                   chain=chain + (app.id,))
            if outcome.fatal:
                return report.add(RunOutcome(
                    id=app.id,
                    status=OutcomeStatus.FAILED,
                    message=f"prerequisite {prerequisite.app} failed: {outcome.message}",
                    stage="prerequisites",
                    error_kind=outcome.error_kind,
                    fatal=True,
                ))

        logger.info("Processing %s", app.id)
        if app.is_composite:
            outcome = self._process_composite(app, ctx, force)
        else:
            outcome = self._process(app, ctx, force)
        ctx.prerequisite_outcomes[app.id] = outcome
        if force:
            ctx.forced_ids.add(app.id)
        return report.add(outcome)

    @staticmethod
    def _prerequisites(app: ApplicationSpec, ctx: RunContext) -> list[Prerequisite]:
        found = list(app.prerequisites)
        for name in app.dependency_groups:
            if name in ctx.installed_groups:
                continue
            found.extend(ctx.catalog.dependency_groups[name].prerequisites)
        return found

    def _process(
        self,
        app: ApplicationSpec,
        ctx: RunContext,
        force: bool,
        probe: VersionProbe | None = None,
    ) -> RunOutcome:
        with ctx.workspace.open(app.id) as workspace:
            job = AppJob(app=app, workspace=workspace, force=force)

            if probe is None and not force:
                probe = self.oracle.probe(app, ctx, job)
                decided = self._decide(app, probe, ctx)
                if decided is not None:
                    return decided
            elif probe is None and ctx.request.dry_run:
                return RunOutcome(id=app.id, status=OutcomeStatus.SKIPPED,
                                  message="would reinstall (forced)")

            installed_before = probe.installed if probe else presence.is_present(app, ctx)
            artifact = self.acquirer.acquire(app, ctx, job, probe)
            if isinstance(artifact, AcquireFailure):
                return self._failed(app, "acquire", artifact.error, artifact.error_kind)

            result = self.builder.build(artifact, app, ctx, job)
            if not result.ok:
                return self._failed(app, result.failed_stage, result.error, result.error_kind,
                                    warnings=result.warnings)

            status = OutcomeStatus.UPDATED if installed_before else OutcomeStatus.INSTALLED
            latest = (probe.latest_version if probe else None) or artifact.version
            logger.info("%s %s", app.id, status.value)
            return RunOutcome(
                id=app.id,
                status=status,
                message=f"{app.id} {status.value}",
                stage=result.stage.value,
                warnings=result.warnings,
                installed_version=probe.installed_version if probe else None,
                latest_version=latest,
            )

    def _decide(self, app: ApplicationSpec, probe: VersionProbe, ctx: RunContext) -> RunOutcome | None:
        """Outcome that needs no acquisition, or None to go ahead."""
        if probe.is_up_to_date:
            return RunOutcome(
                id=app.id,
                status=OutcomeStatus.UP_TO_DATE,
                message=f"{app.id} is up to date",
                installed_version=probe.installed_version,
                latest_version=probe.latest_version,
            )
        if not probe.comparable:
            if app.version.strategy == VersionStrategy.NEVER_AUTO_CHECKED:
                return RunOutcome(id=app.id, status=OutcomeStatus.SKIPPED, message=probe.message)
            return self._failed(app, "probe", probe.message, probe.error_kind or "transient")
        if ctx.request.dry_run:
            return RunOutcome(
                id=app.id,
                status=OutcomeStatus.SKIPPED,
                message=(f"update available: {probe.installed_version or 'not installed'}"
                         f" -> {probe.latest_version or 'latest'}"),
                installed_version=probe.installed_version,
                latest_version=probe.latest_version,
            )
        return None

    def _process_composite(self, app: ApplicationSpec, ctx: RunContext, force: bool) -> RunOutcome:
        probes: dict[str, VersionProbe] = {}
        if force:
            stale = list(app.components)
            if ctx.request.dry_run:
                return RunOutcome(id=app.id, status=OutcomeStatus.SKIPPED,
                                  message="would reinstall (forced)")
        else:
            with ctx.workspace.open(app.id) as workspace:
                probe = self.oracle.probe(app, ctx, AppJob(app=app, workspace=workspace))
            if not probe.comparable:
                return self._failed(app, "probe", probe.message, probe.error_kind or "transient")
            stale = probe.stale_components()
            if not stale:
                return RunOutcome(id=app.id, status=OutcomeStatus.UP_TO_DATE,
                                  message=f"{app.id} is up to date")
            if ctx.request.dry_run:
                return RunOutcome(id=app.id, status=OutcomeStatus.SKIPPED,
                                  message=f"update available for {', '.join(stale)}")
            probes = probe.components

        done: list[str] = []
        warnings: list[str] = []
        any_updated = False
        for cid in stale:
            component = ctx.catalog.get(cid)
            outcome = self._process(component, ctx, force, probe=probes.get(cid))
            if outcome.failed:
                return self._failed(app, outcome.stage or "install",
                                    f"{cid}: {outcome.message}", outcome.error_kind,
                                    warnings=warnings + outcome.warnings)
            any_updated = any_updated or outcome.status == OutcomeStatus.UPDATED
            warnings.extend(outcome.warnings)
            done.append(cid)

        status = OutcomeStatus.UPDATED if any_updated else OutcomeStatus.INSTALLED
        return RunOutcome(
            id=app.id,
            status=status,
            message=f"{app.id} {status.value} ({', '.join(done)})",
            stage="desktop_integrated",
            warnings=warnings,
        )

    @staticmethod
    def _failed(
        app: ApplicationSpec,
        stage: str | None,
        message: str | None,
        error_kind: str | None,
        warnings: list[str] | None = None,
    ) -> RunOutcome:
        # a broken dependency install poisons every later app too
        fatal = not app.optional or error_kind == "dependencies"
        logger.error("%s failed at %s: %s", app.id, stage, message)
        return RunOutcome(
            id=app.id,
            status=OutcomeStatus.FAILED,
            message=message or "failed",
            stage=stage,
            error_kind=error_kind,
            warnings=warnings or [],
            fatal=fatal,
        )
