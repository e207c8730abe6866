"""
Tests for the acquirer — clones, pulls, downloads and tarballs.
"""

import io
import tarfile
from pathlib import Path

import pytest

from nexus_updater.core.context import AppJob
from nexus_updater.core.engine.acquirer import Acquirer
from nexus_updater.core.models.action import Receipt
from nexus_updater.core.models.probe import AcquireFailure, Artifact, VersionProbe

from tests.conftest import make_clone, write_file


@pytest.fixture
def job(tmp_path: Path):
    def _job(app):
        workspace = tmp_path / "ws" / app.id
        workspace.mkdir(parents=True)
        return AppJob(app=app, workspace=workspace)
    return _job


def _tarball(top: str) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        data = b"#!/bin/sh\necho configured\n"
        info = tarfile.TarInfo(f"{top}/configure")
        info.size = len(data)
        info.mode = 0o755
        tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


# ── git ─────────────────────────────────────────────────────────────


class TestGitAcquire:
    def test_clone_when_absent(self, ctx, job, settings, adapters):
        app = ctx.catalog.get("gamma")
        adapters["git"].set_output("head", "abc123")

        artifact = Acquirer().acquire(app, ctx, job(app))

        assert isinstance(artifact, Artifact)
        assert artifact.kind == "git"
        assert artifact.changed
        assert artifact.version == "abc123"
        assert artifact.source_dir == settings.src_dir / "gamma"
        clone = adapters["git"].calls("clone")[0]
        assert clone.param("url") == "https://example.org/gamma.git"
        assert clone.param("repo_dir") == str(settings.src_dir / "gamma")

    def test_failed_clone_leaves_nothing_behind(self, ctx, job, settings, adapters):
        app = ctx.catalog.get("gamma")

        def partial_clone(context):
            Path(context.param("repo_dir"), "half").mkdir(parents=True)
            return Receipt.failure(adapter="git", action_id=context.action.id,
                                   error="early EOF")

        adapters["git"].set_response("clone", partial_clone)

        result = Acquirer().acquire(app, ctx, job(app))

        assert isinstance(result, AcquireFailure)
        assert result.error_kind == "acquire"
        assert "early EOF" in result.error
        assert not (settings.src_dir / "gamma").exists()

    def test_broken_clone_is_recloned(self, ctx, job, settings, adapters):
        app = ctx.catalog.get("gamma")
        leftover = settings.src_dir / "gamma"
        leftover.mkdir(parents=True)
        (leftover / "junk").write_text("x")

        Acquirer().acquire(app, ctx, job(app))

        assert not (leftover / "junk").exists()
        assert len(adapters["git"].calls("clone")) == 1

    def test_existing_clone_is_reset_and_pulled(self, ctx, job, settings, adapters):
        make_clone(settings, "gamma")
        app = ctx.catalog.get("gamma")
        adapters["git"].set_output("pull", "Already up to date.", changed=False)

        artifact = Acquirer().acquire(app, ctx, job(app))

        ops = [c.param("operation") for c in adapters["git"].call_log]
        assert ops == ["reset", "pull", "head"]
        assert not artifact.changed

    def test_pull_failure(self, ctx, job, settings, adapters):
        make_clone(settings, "gamma")
        app = ctx.catalog.get("gamma")
        adapters["git"].set_failure("pull", "Not possible to fast-forward")

        result = Acquirer().acquire(app, ctx, job(app))

        assert isinstance(result, AcquireFailure)
        assert "fast-forward" in result.error


# ── downloads ───────────────────────────────────────────────────────


class TestDownloadAcquire:
    def test_uses_url_found_by_probe(self, ctx, job, adapters):
        app = ctx.catalog.get("debapp")
        probe = VersionProbe(app_id="debapp", latest_version="1.9.0",
                             download_url="http://example.org/files/debapp_1.9.0_armhf.deb")
        adapters["http"].set_response("download", write_file("deb"))
        j = job(app)

        artifact = Acquirer().acquire(app, ctx, j, probe)

        assert artifact.kind == "download"
        assert artifact.version == "1.9.0"
        assert artifact.file == j.workspace / "debapp_1.9.0_armhf.deb"
        assert adapters["http"].calls("fetch_page") == []

    def test_forced_run_scrapes_the_page(self, ctx, job, adapters):
        app = ctx.catalog.get("debapp")
        adapters["http"].set_output("fetch_page", '<a href="debapp_2.0_armhf.deb">x</a>',
                                    url="http://example.org/releases/")
        adapters["http"].set_response("download", write_file("deb"))

        artifact = Acquirer().acquire(app, ctx, job(app))

        assert artifact.version == "2.0"
        assert artifact.file.name == "debapp_2.0_armhf.deb"

    def test_empty_download_fails_and_clears_workspace(self, ctx, job, adapters):
        app = ctx.catalog.get("debapp")
        probe = VersionProbe(app_id="debapp", download_url="http://example.org/debapp_1_armhf.deb")
        adapters["http"].set_response("download", write_file("deb", b""))
        j = job(app)
        (j.workspace / "stale.txt").write_text("old")

        result = Acquirer().acquire(app, ctx, j, probe)

        assert isinstance(result, AcquireFailure)
        assert "empty" in result.error
        assert list(j.workspace.iterdir()) == []

    def test_download_failure(self, ctx, job, adapters):
        app = ctx.catalog.get("debapp")
        probe = VersionProbe(app_id="debapp", download_url="http://example.org/debapp_1_armhf.deb")
        adapters["http"].set_failure("download", "HTTP 404 for http://example.org/debapp_1_armhf.deb")

        result = Acquirer().acquire(app, ctx, job(app), probe)

        assert isinstance(result, AcquireFailure)
        assert "404" in result.error

    def test_staged_file_is_reused(self, ctx, job, adapters, tmp_path):
        app = ctx.catalog.get("flagapp")
        staged = tmp_path / "probe" / "pilflag"
        staged.parent.mkdir()
        staged.write_bytes(b"\x7fELF")
        probe = VersionProbe(app_id="flagapp", latest_version="6.0.21.14",
                             staged_file=str(staged))
        j = job(app)

        artifact = Acquirer().acquire(app, ctx, j, probe)

        assert artifact.files == [j.workspace / "pilflag"]
        assert (j.workspace / "pilflag").read_bytes() == b"\x7fELF"
        assert adapters["http"].calls("download") == []

    def test_tarball_is_unpacked_in_workspace(self, ctx, job, adapters):
        app = ctx.catalog.get("tarapp")
        probe = VersionProbe(app_id="tarapp", latest_version="1.2",
                             download_url="http://example.org/dl/tarapp-1.2.tar.gz")
        adapters["http"].set_response("download", write_file("tar", _tarball("tarapp-1.2")))
        j = job(app)

        artifact = Acquirer().acquire(app, ctx, j, probe)

        assert artifact.source_dir == j.workspace / "src" / "tarapp-1.2"
        assert (artifact.source_dir / "configure").is_file()
        assert j.source_dir == artifact.source_dir

    def test_corrupt_tarball(self, ctx, job, adapters):
        app = ctx.catalog.get("tarapp")
        probe = VersionProbe(app_id="tarapp", download_url="http://example.org/dl/tarapp-1.2.tar.gz")
        adapters["http"].set_response("download", write_file("tar", b"not a tarball"))

        result = Acquirer().acquire(app, ctx, job(app), probe)

        assert isinstance(result, AcquireFailure)
        assert "unpack" in result.error

    def test_no_source(self, ctx, job):
        app = ctx.catalog.get("os")
        artifact = Acquirer().acquire(app, ctx, job(app))
        assert artifact.kind == "none"
