"""
Self-update — bring the updater itself current before anything else.

The updater's own catalog entry is an ordinary git-backed script app.
When it changes, the run stops so the operator starts the new version;
nothing else in the request is processed by the old code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from nexus_updater.core.context import AppJob, RunContext
from nexus_updater.core.engine.acquirer import Acquirer
from nexus_updater.core.engine.builder import Builder
from nexus_updater.core.engine.oracle import VersionOracle
from nexus_updater.core.models.probe import AcquireFailure

logger = logging.getLogger(__name__)

SELF_APP_ID = "nexus-updater"


@dataclass
class SelfUpdateResult:
    updated: bool = False
    message: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"updated": self.updated, "message": self.message, "error": self.error}


class SelfUpdater:
    def __init__(
        self,
        oracle: VersionOracle | None = None,
        acquirer: Acquirer | None = None,
        builder: Builder | None = None,
    ):
        self.oracle = oracle or VersionOracle()
        self.acquirer = acquirer or Acquirer()
        self.builder = builder or Builder()

    def check_self(self, ctx: RunContext) -> SelfUpdateResult:
        """Update the updater if its repository moved.

        A failed check is reported but does not stop the run.
        """
        app = ctx.catalog.get(SELF_APP_ID)
        if app is None:
            return SelfUpdateResult(error=f"{SELF_APP_ID} is not in the catalog")
        if ctx.settings.self_repo_url:
            source = app.source.model_copy(update={"url": ctx.settings.self_repo_url})
            app = app.model_copy(update={"source": source})

        logger.info("Checking for updates to %s", SELF_APP_ID)
        with ctx.workspace.open(app.id) as workspace:
            job = AppJob(app=app, workspace=workspace)
            probe = self.oracle.probe(app, ctx, job)
            if probe.is_up_to_date:
                return SelfUpdateResult(message=f"{SELF_APP_ID} is up to date")
            if not probe.comparable:
                logger.warning("Cannot check %s: %s", SELF_APP_ID, probe.message)
                return SelfUpdateResult(error=probe.message)
            if ctx.request.dry_run:
                return SelfUpdateResult(message=f"{SELF_APP_ID} update available")

            artifact = self.acquirer.acquire(app, ctx, job, probe)
            if isinstance(artifact, AcquireFailure):
                logger.warning("Cannot update %s: %s", SELF_APP_ID, artifact.error)
                return SelfUpdateResult(error=artifact.error)
            if probe.installed and not artifact.changed:
                return SelfUpdateResult(message=f"{SELF_APP_ID} is up to date")

            result = self.builder.build(artifact, app, ctx, job)
            if not result.ok:
                logger.warning("Cannot install the new %s: %s", SELF_APP_ID, result.error)
                return SelfUpdateResult(error=result.error)

        message = f"{SELF_APP_ID} has been updated. Please run it again."
        logger.info(message)
        return SelfUpdateResult(updated=True, message=message)
