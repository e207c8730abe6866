"""
VersionOracle — installed vs. latest version, one strategy per kind.

Strategies are read-only: they look at the package database, fetch
(never merge) git remotes, scrape download pages and run version flags.
Every probe is fresh; nothing is cached between applications or runs.

A strategy that cannot tell what the latest version is returns
``comparable=False``. That is never "up to date": the planner reports
it as a transient failure unless the operator forced a reinstall.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from nexus_updater.core.context import AppJob, RunContext
from nexus_updater.core.engine.errors import TransientEnvironmentError
from nexus_updater.core.models.application import ApplicationSpec, VersionStrategy
from nexus_updater.core.models.probe import VersionProbe
from nexus_updater.core.services import presence, scrape

logger = logging.getLogger(__name__)


def _unknown(app: ApplicationSpec, message: str, kind: str = "transient", **kw) -> VersionProbe:
    return VersionProbe(app_id=app.id, comparable=False, message=message, error_kind=kind, **kw)


def binary_version(
    ctx: RunContext,
    app_id: str,
    binary: str,
    flag: str,
    pattern: str,
) -> str | None:
    """Version reported by ``binary flag``; None when the binary is absent.

    A binary that runs but prints nothing recognisable reports
    ``"unknown"`` so it still counts as installed.
    """
    path = presence.find_binary(binary)
    if path is None:
        return None
    receipt = ctx.call(
        "shell",
        "run",
        app_id=app_id,
        tag=f"version.{path.name}",
        command=[str(path), flag],
        stream=False,
        timeout=30,
    )
    text = "\n".join(
        part for part in (
            receipt.output,
            receipt.metadata.get("stdout", ""),
            receipt.metadata.get("stderr", ""),
        ) if part
    )
    match = re.search(pattern, text)
    if not match:
        logger.debug("%s %s printed no version: %r", path, flag, text[:200])
        return "unknown"
    return match.group(1) if match.groups() else match.group(0)


def scrape_latest(app: ApplicationSpec, ctx: RunContext) -> tuple[str, str]:
    """(download URL, version) of the newest release on the app's page.

    Raises:
        TransientEnvironmentError: page unreachable or no matching link.
    """
    check = app.version
    page = ctx.call("http", "fetch_page", app_id=app.id, url=check.page_url)
    if not page.ok:
        raise TransientEnvironmentError(
            f"Cannot fetch {check.page_url}: {page.error}", app.id, "probe",
        )
    base = page.metadata.get("url") or check.page_url
    link = scrape.find_link(page.output, check.link_pattern, base, check.line_filter)
    if link is None:
        raise TransientEnvironmentError(
            f"No download link matching '{check.link_pattern}' on {check.page_url} "
            "(page layout changed?)",
            app.id,
            "probe",
        )
    version = scrape.extract_version(scrape.file_name(link), check.version_pattern)
    if not version:
        raise TransientEnvironmentError(
            f"Cannot read a version from {link} (page layout changed?)", app.id, "probe",
        )
    return link, version


# ── Strategies ──────────────────────────────────────────────────────


class ProbeStrategy(ABC):
    @abstractmethod
    def probe(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        """Installed and latest version of ``app``."""


class PackageManagerProbe(ProbeStrategy):
    """dpkg for the installed version, apt-cache policy for the candidate."""

    def probe(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        package = app.version.package
        installed = ctx.call("apt", "installed_version", app_id=app.id, package=package)
        if not installed.ok:
            return _unknown(app, f"Cannot query dpkg for {package}: {installed.error}")
        installed_version = installed.metadata.get("version")

        candidate = ctx.call("apt", "candidate_version", app_id=app.id, package=package)
        if not candidate.ok:
            return _unknown(app, f"Cannot query apt for {package}: {candidate.error}",
                            installed_version=installed_version)
        latest = candidate.metadata.get("version")

        if latest is None:
            if installed_version is None and app.recipe.apt_repository is not None:
                # Repository gets added by the install step
                return VersionProbe(
                    app_id=app.id,
                    message=f"{package} repository not configured yet",
                )
            return _unknown(app, f"No candidate version of {package} in the package cache",
                            installed_version=installed_version)

        return VersionProbe(app_id=app.id, installed_version=installed_version, latest_version=latest)


class GitRepoProbe(ProbeStrategy):
    """Compare the local clone's HEAD with its upstream after a fetch.

    Fetching updates remote-tracking refs only; the working tree is not
    touched until the Acquirer pulls.
    """

    def probe(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        repo_dir = ctx.source_dir(app)
        head_file = repo_dir / ".git" / "HEAD"
        if not head_file.is_file() or head_file.stat().st_size == 0:
            return VersionProbe(app_id=app.id, message=f"no local clone in {repo_dir}")

        fetch = ctx.call("git", "fetch", app_id=app.id, repo_dir=str(repo_dir))
        if not fetch.ok:
            return _unknown(app, f"git fetch failed in {repo_dir}: {fetch.error}")

        head = ctx.call("git", "head", app_id=app.id, repo_dir=str(repo_dir))
        upstream = ctx.call("git", "upstream", app_id=app.id, repo_dir=str(repo_dir))
        if not head.ok or not upstream.ok:
            error = head.error if not head.ok else upstream.error
            return _unknown(app, f"Cannot compare {repo_dir} with its upstream: {error}")

        return VersionProbe(
            app_id=app.id,
            installed_version=head.output.strip(),
            latest_version=upstream.output.strip(),
        )


class ScrapedPageProbe(ProbeStrategy):
    """Latest version from a download page, installed from dpkg or a flag."""

    def probe(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        check = app.version
        try:
            url, latest = scrape_latest(app, ctx)
        except TransientEnvironmentError as e:
            return _unknown(app, str(e))

        if check.installed_from == "package":
            receipt = ctx.call("apt", "installed_version", app_id=app.id, package=check.package)
            if not receipt.ok:
                return _unknown(app, f"Cannot query dpkg for {check.package}: {receipt.error}")
            installed = receipt.metadata.get("version")
        else:
            installed = binary_version(
                ctx, app.id, ctx.expand(check.binary), check.version_flag, check.flag_pattern,
            )

        return VersionProbe(
            app_id=app.id,
            installed_version=installed,
            latest_version=latest,
            download_url=url,
        )


class VersionFlagProbe(ProbeStrategy):
    """Run the installed binary and a freshly downloaded candidate with the
    same version flag and compare what they print."""

    def probe(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        check = app.version
        installed = binary_version(
            ctx, app.id, ctx.expand(check.binary), check.version_flag, check.flag_pattern,
        )

        url = ctx.expand(check.download_url)
        staged = job.workspace / scrape.file_name(url)
        download = ctx.call(
            "http", "download", app_id=app.id, url=url, dest=str(staged), executable=True,
        )
        if not download.ok or not staged.is_file() or staged.stat().st_size == 0:
            return _unknown(app, f"Cannot download {url}: {download.error or 'empty file'}",
                            installed_version=installed)

        latest = binary_version(ctx, app.id, str(staged), check.version_flag, check.flag_pattern)
        if latest in (None, "unknown"):
            return _unknown(app, f"{staged.name} {check.version_flag} printed no version",
                            installed_version=installed)

        return VersionProbe(
            app_id=app.id,
            installed_version=installed,
            latest_version=latest,
            download_url=url,
            staged_file=str(staged),
        )


class AlwaysInstalledProbe(ProbeStrategy):
    """No version to compare; the (idempotent) action always runs."""

    def probe(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        installed = "present" if presence.is_present(app, ctx) else None
        return VersionProbe(app_id=app.id, installed_version=installed, message="always updated")


class NeverAutoCheckedProbe(ProbeStrategy):
    def probe(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        return _unknown(
            app,
            f"{app.id} is not checked automatically; use --force-reinstall to install it",
            kind="not_checked",
        )


DEFAULT_STRATEGIES: dict[VersionStrategy, ProbeStrategy] = {
    VersionStrategy.PACKAGE_MANAGER: PackageManagerProbe(),
    VersionStrategy.GIT_REPO: GitRepoProbe(),
    VersionStrategy.SCRAPED_PAGE: ScrapedPageProbe(),
    VersionStrategy.VERSION_FLAG: VersionFlagProbe(),
    VersionStrategy.ALWAYS_INSTALLED: AlwaysInstalledProbe(),
    VersionStrategy.NEVER_AUTO_CHECKED: NeverAutoCheckedProbe(),
}


class VersionOracle:
    """Dispatches to the strategy named in each ApplicationSpec."""

    def __init__(self, strategies: dict[VersionStrategy, ProbeStrategy] | None = None):
        self._strategies = dict(DEFAULT_STRATEGIES)
        if strategies:
            self._strategies.update(strategies)

    def probe(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        if app.is_composite:
            return self._probe_composite(app, ctx, job)

        strategy = self._strategies[app.version.strategy]
        try:
            result = strategy.probe(app, ctx, job)
        except (re.error, KeyError, IndexError, ValueError) as e:
            # bad pattern or unknown {variable} in the catalog entry
            return _unknown(app, f"Cannot check {app.id}: {e}", kind="catalog")

        logger.info(
            "%s: installed=%s latest=%s%s",
            app.id,
            result.installed_version or "-",
            result.latest_version or "-",
            "" if result.comparable else " (not comparable)",
        )
        return result

    def _probe_composite(self, app: ApplicationSpec, ctx: RunContext, job: AppJob) -> VersionProbe:
        components: dict[str, VersionProbe] = {}
        for cid in app.components:
            component = ctx.catalog.get(cid)
            sub = AppJob(app=component, workspace=job.workspace / cid)
            sub.workspace.mkdir(parents=True, exist_ok=True)
            components[cid] = self.probe(component, ctx, sub)

        broken = [p for p in components.values() if not p.comparable]
        installed = any(p.installed for p in components.values())
        return VersionProbe(
            app_id=app.id,
            installed_version="present" if installed else None,
            comparable=not broken,
            message="; ".join(p.message for p in broken),
            error_kind=broken[0].error_kind if broken else None,
            components=components,
        )


def staged_path(probe: VersionProbe | None) -> Path | None:
    if probe is None or not probe.staged_file:
        return None
    path = Path(probe.staged_file)
    return path if path.is_file() else None
