"""
Acquirer — get the bits onto the box.

Git sources live in a persistent clone under the source root and are
cloned on first use, then hard-reset and fast-forwarded. Downloads go
into the application's scratch workspace; tarballs are unpacked there
too. A failed acquisition never leaves partial downloads behind.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
from pathlib import Path

from nexus_updater.core.context import AppJob, RunContext
from nexus_updater.core.engine.errors import AcquireError, TransientEnvironmentError
from nexus_updater.core.engine.oracle import scrape_latest, staged_path
from nexus_updater.core.engine.workspace import clear
from nexus_updater.core.models.application import ApplicationSpec, Download
from nexus_updater.core.models.probe import AcquireFailure, Artifact, VersionProbe
from nexus_updater.core.services import scrape

logger = logging.getLogger(__name__)


class Acquirer:
    def acquire(
        self,
        app: ApplicationSpec,
        ctx: RunContext,
        job: AppJob,
        probe: VersionProbe | None = None,
    ) -> Artifact | AcquireFailure:
        """Fetch ``app`` into its source directory or workspace.

        Returns an Artifact, or an AcquireFailure after clearing the
        workspace. Never raises for network or VCS problems.
        """
        kind = app.source.kind
        try:
            if kind == "git":
                return self._git(app, ctx, job)
            if kind == "download":
                return self._download(app, ctx, job, probe)
        except (AcquireError, TransientEnvironmentError) as e:
            logger.error("%s: %s", app.id, e)
            self._reset_workspace(job)
            return AcquireFailure(app_id=app.id, error=str(e), error_kind=e.kind)

        return Artifact(
            app_id=app.id,
            kind="none",
            version=probe.latest_version if probe else None,
        )

    # ── git ─────────────────────────────────────────────────────

    def _git(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> Artifact:
        source = app.source
        repo_dir = ctx.source_dir(app)
        job.source_dir = repo_dir
        head_file = repo_dir / ".git" / "HEAD"

        if not head_file.is_file() or head_file.stat().st_size == 0:
            if repo_dir.exists():
                logger.info("Removing incomplete clone %s", repo_dir)
                clear(repo_dir)
            repo_dir.parent.mkdir(parents=True, exist_ok=True)
            logger.info("Cloning %s into %s", source.url, repo_dir)
            params = {"url": source.url, "repo_dir": str(repo_dir)}
            if source.branch:
                params["branch"] = source.branch
            receipt = ctx.call("git", "clone", app_id=app.id, **params)
            if not receipt.ok:
                clear(repo_dir)
                raise AcquireError(
                    f"git clone {source.url} failed: {receipt.error}", app.id, "acquire",
                )
            changed = True
        else:
            reset = ctx.call("git", "reset", app_id=app.id, repo_dir=str(repo_dir))
            if not reset.ok:
                raise AcquireError(f"git reset in {repo_dir} failed: {reset.error}", app.id, "acquire")
            if source.branch:
                checkout = ctx.call(
                    "git", "checkout", app_id=app.id, repo_dir=str(repo_dir), branch=source.branch,
                )
                if not checkout.ok:
                    raise AcquireError(
                        f"git checkout {source.branch} failed: {checkout.error}", app.id, "acquire",
                    )
            pull = ctx.call("git", "pull", app_id=app.id, repo_dir=str(repo_dir))
            if not pull.ok:
                raise AcquireError(f"git pull in {repo_dir} failed: {pull.error}", app.id, "acquire")
            changed = bool(pull.metadata.get("changed", True))

        head = ctx.call("git", "head", app_id=app.id, repo_dir=str(repo_dir))
        version = head.output.strip() if head.ok and head.output else None
        return Artifact(
            app_id=app.id,
            kind="git",
            source_dir=repo_dir,
            version=version,
            changed=changed,
        )

    # ── downloads ───────────────────────────────────────────────

    def _download(
        self,
        app: ApplicationSpec,
        ctx: RunContext,
        job: AppJob,
        probe: VersionProbe | None,
    ) -> Artifact:
        downloads = list(app.source.downloads)
        version = probe.latest_version if probe else None
        if not downloads:
            url = probe.download_url if probe else None
            if not url:
                url, version = scrape_latest(app, ctx)
            downloads = [Download(url=url, filename=scrape.file_name(url))]

        staged = staged_path(probe)
        files: list[Path] = []
        for download in downloads:
            url = ctx.expand(download.url, job)
            dest = job.workspace / download.name
            if staged is not None and staged.name == download.name:
                if staged != dest:
                    shutil.copy2(staged, dest)
                logger.info("Using %s downloaded while checking the version", download.name)
            else:
                logger.info("Downloading %s", url)
                receipt = ctx.call(
                    "http",
                    "download",
                    app_id=app.id,
                    tag=f"download.{download.name}",
                    url=url,
                    dest=str(dest),
                    executable=download.executable,
                )
                if not receipt.ok:
                    raise AcquireError(f"Download of {url} failed: {receipt.error}", app.id, "acquire")
            if not dest.is_file() or dest.stat().st_size == 0:
                raise AcquireError(f"Downloaded file {download.name} is missing or empty", app.id, "acquire")
            files.append(dest)

        source_dir = None
        if app.source.extract:
            source_dir = self._extract(files[0], job.workspace / "src", app.id)
        job.source_dir = source_dir

        return Artifact(
            app_id=app.id,
            kind="download",
            source_dir=source_dir,
            files=files,
            version=version,
        )

    @staticmethod
    def _extract(archive: Path, dest: Path, app_id: str) -> Path:
        """Unpack ``archive`` into ``dest``; returns the top-level directory."""
        dest.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(archive) as tar:
                tar.extractall(dest, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise AcquireError(f"Cannot unpack {archive.name}: {e}", app_id, "acquire") from e

        entries = list(dest.iterdir())
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return dest

    @staticmethod
    def _reset_workspace(job: AppJob) -> None:
        if job.workspace.is_dir():
            for child in job.workspace.iterdir():
                clear(child)
