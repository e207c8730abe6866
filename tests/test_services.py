"""
Tests for host services — hardware facts, page scraping and presence.
"""

from pathlib import Path

from nexus_updater.core.services import hardware, presence, scrape


# ── hardware ────────────────────────────────────────────────────────


class TestHardware:
    def test_pi4(self, tmp_path: Path):
        cpuinfo = tmp_path / "cpuinfo"
        cpuinfo.write_text("processor : 0\nModel\t\t: Raspberry Pi 4 Model B Rev 1.4\n")
        assert hardware.pi_model(cpuinfo) == "rpi4"

    def test_pi3_plus(self, tmp_path: Path):
        cpuinfo = tmp_path / "cpuinfo"
        cpuinfo.write_text("Model : Raspberry Pi 3 Model B Plus Rev 1.3\n")
        assert hardware.pi_model(cpuinfo) == "rpi3"

    def test_other_board(self, tmp_path: Path):
        cpuinfo = tmp_path / "cpuinfo"
        cpuinfo.write_text("Model : Raspberry Pi Zero W Rev 1.1\n")
        assert hardware.pi_model(cpuinfo) == ""

    def test_no_cpuinfo(self, tmp_path: Path):
        assert hardware.pi_model(tmp_path / "missing") == ""

    def test_cpu_count(self):
        assert hardware.cpu_count() >= 1


# ── scrape ──────────────────────────────────────────────────────────


class TestScrape:
    PAGE = (
        '<a href="https://github.com/la5nta/pat/releases/download/v0.12.1/pat_0.12.1_linux_amd64.deb">x</a>\n'
        '<a href="/la5nta/pat/releases/download/v0.12.1/pat_0.12.1_linux_armhf.deb">y</a>\n'
    )

    def test_first_matching_link_resolved(self):
        link = scrape.find_link(self.PAGE, r"linux_armhf\.deb$", "https://github.com/la5nta/pat/releases")
        assert link == "https://github.com/la5nta/pat/releases/download/v0.12.1/pat_0.12.1_linux_armhf.deb"

    def test_no_match(self):
        assert scrape.find_link(self.PAGE, r"arm64\.deb$", "https://github.com/") is None

    def test_line_filter(self):
        page = "<a href='arim-2.9.tar.gz'>old</a>\n<b>Current</b> <a href='arim-2.10.tar.gz'>new</a>\n"
        link = scrape.find_link(page, r"arim-.*\.tar\.gz", "https://example.org/arim/", "Current")
        assert link == "https://example.org/arim/arim-2.10.tar.gz"

    def test_file_name_is_decoded(self):
        assert scrape.file_name("https://x.org/dl/js8call_2.2.0%2Bfix_armhf.deb?x=1") == \
            "js8call_2.2.0+fix_armhf.deb"

    def test_extract_version(self):
        assert scrape.extract_version("pat_0.12.1_linux_armhf.deb", r"pat_([^_]+)_") == "0.12.1"
        assert scrape.extract_version("wsjtx_2.4.0_armhf.deb", r"\d+\.\d+\.\d+") == "2.4.0"
        assert scrape.extract_version("readme.txt", r"(\d+)") is None


# ── presence ────────────────────────────────────────────────────────


class TestPresence:
    def test_find_binary_by_path(self, tmp_path: Path):
        binary = tmp_path / "pat"
        binary.write_text("#!/bin/sh\n")
        assert presence.find_binary(str(binary)) == binary
        assert presence.find_binary(str(tmp_path / "nope")) is None

    def test_find_binary_on_path(self):
        assert presence.find_binary("sh") is not None
        assert presence.find_binary("no-such-binary-anywhere") is None

    def test_always(self, ctx):
        assert presence.is_present(ctx.catalog.get("os"), ctx)

    def test_package_marker(self, ctx, adapters):
        adapters["apt"].set_output("installed_version", "1.9.0", installed=True, version="1.9.0")
        assert presence.is_present(ctx.catalog.get("debapp"), ctx)

        adapters["apt"].set_output("installed_version", "", installed=False, version=None)
        assert not presence.is_present(ctx.catalog.get("debapp"), ctx)

    def test_falls_back_to_binary_named_after_app(self, ctx, monkeypatch):
        seen = []
        monkeypatch.setattr(presence, "find_binary", lambda name: seen.append(name))
        assert not presence.is_present(ctx.catalog.get("gamma"), ctx)
        assert seen == ["gamma"]

    def test_composite_present_if_any_component_is(self, ctx, monkeypatch):
        monkeypatch.setattr(presence, "find_binary",
                            lambda name: Path("/usr/bin/part-b") if name == "part-b" else None)
        assert presence.is_present(ctx.catalog.get("combo"), ctx)
