"""
Tests for the version oracle strategies.
"""

from pathlib import Path

import pytest

from nexus_updater.core.context import AppJob
from nexus_updater.core.engine.oracle import VersionOracle, binary_version
from nexus_updater.core.models.action import Receipt
from nexus_updater.core.models.application import ApplicationSpec
from nexus_updater.core.services import presence

from tests.conftest import make_clone, write_file

RELEASES_PAGE = """
<html><body>
<a href="debapp_1.9.0_amd64.deb">amd64</a>
<a href="/files/debapp_1.9.0_armhf.deb">armhf</a>
<a href="debapp_1.8.0_armhf.deb">older</a>
</body></html>
"""

TARAPP_PAGE = """
<p>Old: <a href="dl/tarapp-1.1.tar.gz">tarapp-1.1</a></p>
<p>Current release: <a href="dl/tarapp-1.2.tar.gz">tarapp-1.2</a></p>
"""


@pytest.fixture
def job(tmp_path: Path):
    def _job(app):
        workspace = tmp_path / "ws" / app.id
        workspace.mkdir(parents=True)
        return AppJob(app=app, workspace=workspace)
    return _job


def _probe(ctx, job, app_id):
    app = ctx.catalog.get(app_id)
    return VersionOracle().probe(app, ctx, job(app))


# ── git_repo ────────────────────────────────────────────────────────


class TestGitRepoProbe:
    def test_no_clone_means_not_installed(self, ctx, job, adapters):
        probe = _probe(ctx, job, "gamma")
        assert probe.comparable
        assert not probe.installed
        assert not probe.is_up_to_date
        assert adapters["git"].call_count == 0

    def test_head_behind_upstream(self, ctx, job, settings, adapters):
        make_clone(settings, "gamma")
        adapters["git"].set_output("head", "1111111")
        adapters["git"].set_output("upstream", "2222222")

        probe = _probe(ctx, job, "gamma")

        assert probe.installed_version == "1111111"
        assert probe.latest_version == "2222222"
        assert not probe.is_up_to_date
        assert adapters["git"].action_ids()[0] == "gamma:git.fetch"

    def test_fetch_failure_is_not_comparable(self, ctx, job, settings, adapters):
        make_clone(settings, "gamma")
        adapters["git"].set_failure("fetch", "unable to access")

        probe = _probe(ctx, job, "gamma")

        assert not probe.comparable
        assert probe.error_kind == "transient"
        assert not probe.is_up_to_date

    def test_probe_never_pulls(self, ctx, job, settings, adapters):
        make_clone(settings, "gamma")
        _probe(ctx, job, "gamma")
        assert adapters["git"].calls("pull") == []
        assert adapters["git"].calls("reset") == []


# ── package_manager ─────────────────────────────────────────────────


class TestPackageManagerProbe:
    def test_candidate_newer(self, ctx, job, adapters):
        adapters["apt"].set_output("installed_version", "1.0", installed=True, version="1.0")
        adapters["apt"].set_output("candidate_version", "1.1", version="1.1")

        probe = _probe(ctx, job, "pkgapp")

        assert probe.installed_version == "1.0"
        assert probe.latest_version == "1.1"
        assert not probe.is_up_to_date

    def test_candidate_equal(self, ctx, job, adapters):
        adapters["apt"].set_output("installed_version", "1.1", installed=True, version="1.1")
        adapters["apt"].set_output("candidate_version", "1.1", version="1.1")
        assert _probe(ctx, job, "pkgapp").is_up_to_date

    def test_no_candidate_before_repository_is_added(self, ctx, job, adapters):
        adapters["apt"].set_output("installed_version", "", installed=False, version=None)
        adapters["apt"].set_output("candidate_version", "", version=None)

        probe = _probe(ctx, job, "pkgapp")

        assert probe.comparable
        assert not probe.installed
        assert "repository" in probe.message

    def test_no_candidate_without_repository_is_not_comparable(self, ctx, job, adapters, catalog):
        app = ApplicationSpec.model_validate({
            "id": "plain",
            "description": "plain package",
            "version": {"strategy": "package_manager", "package": "plain"},
            "recipe": {"build_system": "apt"},
        })
        adapters["apt"].set_output("installed_version", "", installed=False, version=None)
        adapters["apt"].set_output("candidate_version", "", version=None)

        probe = VersionOracle().probe(app, ctx, job(app))

        assert not probe.comparable
        assert probe.error_kind == "transient"


# ── scraped_page ────────────────────────────────────────────────────


class TestScrapedPageProbe:
    def test_latest_from_first_matching_link(self, ctx, job, adapters):
        adapters["http"].set_output("fetch_page", RELEASES_PAGE, url="http://example.org/releases/")
        adapters["apt"].set_output("installed_version", "1.8.0", installed=True, version="1.8.0")

        probe = _probe(ctx, job, "debapp")

        assert probe.latest_version == "1.9.0"
        assert probe.installed_version == "1.8.0"
        assert probe.download_url == "http://example.org/files/debapp_1.9.0_armhf.deb"

    def test_page_without_match_is_not_comparable(self, ctx, job, adapters):
        adapters["http"].set_output("fetch_page", "<html>moved</html>")

        probe = _probe(ctx, job, "debapp")

        assert not probe.comparable
        assert probe.error_kind == "transient"
        assert "page layout changed" in probe.message

    def test_unreachable_page_is_not_comparable(self, ctx, job, adapters):
        adapters["http"].set_failure("fetch_page", "Cannot reach example.org")
        assert not _probe(ctx, job, "debapp").comparable

    def test_line_filter_and_binary_version(self, ctx, job, adapters, monkeypatch):
        monkeypatch.setattr(presence, "find_binary", lambda name: Path("/usr/local/bin/tarapp"))
        adapters["http"].set_output("fetch_page", TARAPP_PAGE, url="http://example.org/tarapp.html")
        adapters["shell"].set_output("tarapp:shell.version.tarapp", "tarapp 1.2")

        probe = _probe(ctx, job, "tarapp")

        assert probe.latest_version == "1.2"
        assert probe.installed_version == "1.2"
        assert probe.download_url == "http://example.org/dl/tarapp-1.2.tar.gz"
        assert probe.is_up_to_date

    def test_missing_binary_means_not_installed(self, ctx, job, adapters, monkeypatch):
        monkeypatch.setattr(presence, "find_binary", lambda name: None)
        adapters["http"].set_output("fetch_page", TARAPP_PAGE)

        probe = _probe(ctx, job, "tarapp")

        assert not probe.installed
        assert adapters["shell"].call_count == 0


# ── version_flag ────────────────────────────────────────────────────


class TestVersionFlagProbe:
    def _versions(self, installed: str, candidate: str):
        def responder(context):
            binary = context.param("command")[0]
            text = f"Version {candidate}" if "/ws/" in binary else f"Version {installed}"
            return Receipt.success(adapter="shell", action_id=context.action.id, output=text)
        return responder

    def test_candidate_is_staged_and_compared(self, ctx, job, settings, adapters):
        binary = settings.home_dir / "flagapp" / "flagapp"
        binary.parent.mkdir()
        binary.write_text("#!/bin/sh\n")
        adapters["http"].set_response("download", write_file("pilflag"))
        adapters["shell"].set_response("run", self._versions("6.0.20.1", "6.0.21.14"))

        probe = _probe(ctx, job, "flagapp")

        assert probe.installed_version == "6.0.20.1"
        assert probe.latest_version == "6.0.21.14"
        assert probe.staged_file.endswith("pilflag")
        assert Path(probe.staged_file).is_file()
        assert not probe.is_up_to_date

    def test_not_installed_binary(self, ctx, job, adapters):
        adapters["http"].set_response("download", write_file("pilflag"))
        adapters["shell"].set_response("run", self._versions("-", "6.0.21.14"))

        probe = _probe(ctx, job, "flagapp")

        assert not probe.installed
        assert probe.latest_version == "6.0.21.14"

    def test_empty_download_is_not_comparable(self, ctx, job, adapters):
        adapters["http"].set_response("download", write_file("pilflag", b""))
        probe = _probe(ctx, job, "flagapp")
        assert not probe.comparable


class TestBinaryVersion:
    def test_unparseable_output_still_counts_as_installed(self, ctx, adapters, monkeypatch):
        monkeypatch.setattr(presence, "find_binary", lambda name: Path("/usr/bin/thing"))
        adapters["shell"].set_output("run", "no numbers here")
        assert binary_version(ctx, "thing", "thing", "--version", r"(\d+\.\d+)") == "unknown"

    def test_version_on_stderr(self, ctx, adapters, monkeypatch):
        monkeypatch.setattr(presence, "find_binary", lambda name: Path("/usr/bin/thing"))
        adapters["shell"].set_output("run", "", stderr="thing version 3.4")
        assert binary_version(ctx, "thing", "thing", "--version", r"(\d+\.\d+)") == "3.4"


# ── always / never / composite ──────────────────────────────────────


class TestOtherStrategies:
    def test_always_installed_always_acts(self, ctx, job):
        probe = _probe(ctx, job, "os")
        assert probe.installed
        assert probe.comparable
        assert not probe.is_up_to_date

    def test_never_auto_checked(self, ctx, job, adapters):
        probe = _probe(ctx, job, "manual")
        assert not probe.comparable
        assert probe.error_kind == "not_checked"
        assert adapters["http"].call_count == 0

    def test_composite_collects_component_probes(self, ctx, job, settings):
        make_clone(settings, "part-a")

        probe = _probe(ctx, job, "combo")

        assert set(probe.components) == {"part-a", "part-b"}
        assert probe.stale_components() == ["part-b"]
        assert probe.installed
        assert not probe.is_up_to_date

    def test_bad_pattern_is_a_catalog_error(self, ctx, job, adapters):
        app = ApplicationSpec.model_validate({
            "id": "broken",
            "description": "bad regex",
            "version": {
                "strategy": "scraped_page",
                "page_url": "http://example.org/",
                "link_pattern": "(unclosed",
                "version_pattern": "x",
                "package": "broken",
            },
        })
        adapters["http"].set_output("fetch_page", '<a href="x">x</a>')

        probe = VersionOracle().probe(app, ctx, job(app))

        assert not probe.comparable
        assert probe.error_kind == "catalog"
