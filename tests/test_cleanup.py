"""
Tests for exit-time cleanup: the exit guard, scratch workspaces and
the temporary swap enlargement.
"""

import signal

import pytest

from nexus_updater.core.engine.cleanup import ExitGuard
from nexus_updater.core.engine.workspace import Workspace


# ── ExitGuard ───────────────────────────────────────────────────────


class TestExitGuard:
    def test_runs_newest_first(self):
        guard = ExitGuard()
        order = []
        guard.register("first", lambda: order.append(1))
        guard.register("second", lambda: order.append(2))

        assert guard.pending == ["second", "first"]
        guard.run()

        assert order == [2, 1]
        assert guard.pending == []

    def test_runs_once(self):
        guard = ExitGuard()
        order = []
        guard.register("only", lambda: order.append(1))
        guard.run()
        guard.run()
        assert order == [1]

    def test_discarded_callback_does_not_run(self):
        guard = ExitGuard()
        order = []
        token = guard.register("gone", lambda: order.append(1))
        guard.discard(token)
        guard.run()
        assert order == []

    def test_failing_callback_does_not_stop_the_rest(self):
        guard = ExitGuard()
        order = []

        def boom():
            raise OSError("disk gone")

        guard.register("survivor", lambda: order.append("survivor"))
        guard.register("boom", boom)
        guard.run()

        assert order == ["survivor"]

    def test_signal_cleans_up_then_exits(self):
        guard = ExitGuard()
        order = []
        guard.register("restore", lambda: order.append("restore"))

        with pytest.raises(SystemExit) as exc_info:
            guard._on_signal(signal.SIGINT, None)

        assert exc_info.value.code == 130
        assert order == ["restore"]

    def test_install_and_uninstall_restore_handlers(self):
        before = signal.getsignal(signal.SIGTERM)
        guard = ExitGuard()

        guard.install()
        guard.install()
        assert signal.getsignal(signal.SIGTERM) == guard._on_signal
        guard.uninstall()

        assert signal.getsignal(signal.SIGTERM) == before


# ── Workspace ───────────────────────────────────────────────────────


class TestWorkspace:
    def test_root_is_private(self, tmp_path):
        workspace = Workspace(base_dir=tmp_path)
        assert workspace.root.is_dir()
        assert workspace.root.stat().st_mode & 0o777 == 0o700
        workspace.close()

    def test_app_directory_removed_after_success(self, tmp_path):
        workspace = Workspace(base_dir=tmp_path)
        with workspace.open("fldigi") as path:
            (path / "fldigi.tar.gz").write_bytes(b"x")
        assert not path.exists()
        workspace.close()

    def test_app_directory_removed_after_failure(self, tmp_path):
        workspace = Workspace(base_dir=tmp_path)
        with pytest.raises(RuntimeError):
            with workspace.open("fldigi") as path:
                (path / "partial").write_bytes(b"x")
                raise RuntimeError("build died")
        assert not path.exists()
        workspace.close()

    def test_leftovers_cleared_on_open(self, tmp_path):
        workspace = Workspace(base_dir=tmp_path)
        stale = workspace.path_for("js8call")
        stale.mkdir(parents=True)
        (stale / "old.deb").write_bytes(b"x")

        with workspace.open("js8call") as path:
            assert list(path.iterdir()) == []
        workspace.close()

    def test_close_removes_root_and_guard_entry(self, tmp_path):
        guard = ExitGuard()
        workspace = Workspace(guard=guard, base_dir=tmp_path)
        root = workspace.root
        assert guard.pending == ["remove scratch root"]

        workspace.close()

        assert not root.exists()
        assert guard.pending == []

    def test_guard_removes_root_on_interrupt(self, tmp_path):
        guard = ExitGuard()
        workspace = Workspace(guard=guard, base_dir=tmp_path)
        root = workspace.root
        guard.run()
        assert not root.exists()


# ── Swap ────────────────────────────────────────────────────────────


def _swap_commands(adapters):
    return [c.param("command")[:2] for c in adapters["shell"].calls("run")]


def _swap_seds(adapters):
    return [c.param("command")[3] for c in adapters["shell"].calls("run")
            if c.param("command")[0] == "sed"]


class TestSwap:
    def test_enlarged_and_restored(self, ctx, settings, adapters):
        settings.swap_file.write_text("CONF_SWAPSIZE=100\n")

        with ctx.swap.enlarged("fldigi"):
            assert ctx.guard.pending == ["restore swap size"]

        seds = [c.param("command")[3] for c in adapters["shell"].calls("run")
                if c.param("command")[0] == "sed"]
        assert seds == [
            "s/^CONF_SWAPSIZE=.*/CONF_SWAPSIZE=1024/",
            "s/^CONF_SWAPSIZE=.*/CONF_SWAPSIZE=100/",
        ]
        assert ctx.guard.pending == []

    def test_restored_when_build_fails(self, ctx, settings, adapters):
        settings.swap_file.write_text("CONF_SWAPSIZE=100\n")

        with pytest.raises(RuntimeError):
            with ctx.swap.enlarged("fldigi"):
                raise RuntimeError("out of memory")

        assert _swap_commands(adapters) == [
            ["sed", "-i"], ["systemctl", "restart"],
            ["sed", "-i"], ["systemctl", "restart"],
        ]

    def test_no_swap_config_is_a_no_op(self, ctx, adapters):
        with ctx.swap.enlarged("fldigi"):
            pass
        assert adapters["shell"].call_count == 0

    def test_already_large_is_a_no_op(self, ctx, settings, adapters):
        settings.swap_file.write_text("# comment\nCONF_SWAPSIZE=1024\n")
        with ctx.swap.enlarged("fldigi"):
            pass
        assert adapters["shell"].call_count == 0

    def test_failed_enlarge_still_builds(self, ctx, settings, adapters):
        settings.swap_file.write_text("CONF_SWAPSIZE=100\n")
        adapters["shell"].set_failure("fldigi:shell.swap.set", "sed: permission denied")

        ran = []
        with ctx.swap.enlarged("fldigi"):
            ran.append(True)

        assert ran == [True]
        assert adapters["shell"].call_count == 1
        assert ctx.guard.pending == []

    def test_failed_restart_still_restores_config(self, ctx, settings, adapters):
        settings.swap_file.write_text("CONF_SWAPSIZE=100\n")
        adapters["shell"].set_failure("fldigi:shell.swap.restart", "Job failed")

        ran = []
        with ctx.swap.enlarged("fldigi"):
            ran.append(True)

        assert ran == [True]
        assert _swap_seds(adapters) == [
            "s/^CONF_SWAPSIZE=.*/CONF_SWAPSIZE=1024/",
            "s/^CONF_SWAPSIZE=.*/CONF_SWAPSIZE=100/",
        ]
        assert ctx.guard.pending == []

    def test_restored_on_interrupt(self, ctx, settings, adapters):
        settings.swap_file.write_text("CONF_SWAPSIZE=100\n")

        with pytest.raises(SystemExit) as exc:
            with ctx.swap.enlarged("fldigi"):
                ctx.guard._on_signal(signal.SIGINT, None)

        assert exc.value.code == 130
        # once from the signal handler; the context exit does not repeat it
        assert _swap_seds(adapters) == [
            "s/^CONF_SWAPSIZE=.*/CONF_SWAPSIZE=1024/",
            "s/^CONF_SWAPSIZE=.*/CONF_SWAPSIZE=100/",
        ]
        assert ctx.guard.pending == []
