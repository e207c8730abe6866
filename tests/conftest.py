"""
Shared test fixtures.

Every engine test runs against a RunContext wired to MockAdapters, so
nothing here touches apt, git, the network or the real desktop.
"""

import getpass
from pathlib import Path

import pytest

from nexus_updater.adapters.mock import MockAdapter
from nexus_updater.adapters.registry import AdapterRegistry
from nexus_updater.core.config.catalog_loader import parse_catalog
from nexus_updater.core.config.loader import Settings
from nexus_updater.core.context import RunContext
from nexus_updater.core.engine.cleanup import ExitGuard
from nexus_updater.core.engine.workspace import Workspace
from nexus_updater.core.models.action import Receipt

ADAPTER_NAMES = ("shell", "git", "apt", "http", "desktop")


def _git(name: str, build_system: str = "autotools", **extra) -> dict:
    body = {
        "description": f"{name} test app",
        "version": {"strategy": "git_repo"},
        "source": {"kind": "git", "url": f"https://example.org/{name}.git"},
        "recipe": {"build_system": build_system},
    }
    body.update(extra)
    return body


CATALOG_DATA = {
    "dependency_groups": {
        "suite": {
            "packages": ["libsuite-dev"],
            "enable_source_repos": True,
            "prerequisites": ["corelib"],
        },
    },
    "applications": {
        "corelib": _git("corelib", recipe={
            "build_system": "autotools",
            "replaces_packages": ["libcore2", "libcore-dev"],
            "hold_packages": ["libcore2"],
        }),
        "alpha": _git("alpha", dependency_groups=["suite"], dependencies=["libalpha-dev"]),
        "delta": _git("delta", dependency_groups=["suite"]),
        "beta": _git("beta", build_system="cmake"),
        "gamma": _git("gamma", build_system="script"),
        "optapp": _git("optapp", optional=True, dependencies=["libopt-dev"]),
        "nexus-updater": _git("nexus-updater", build_system="script"),
        "debapp": {
            "description": "Packaged release",
            "version": {
                "strategy": "scraped_page",
                "page_url": "http://example.org/releases/",
                "link_pattern": r"armhf\.deb$",
                "version_pattern": r"_([^_]+)_armhf\.deb$",
                "package": "debapp",
            },
            "source": {"kind": "download"},
            "recipe": {"build_system": "deb"},
            "presence": {"package": "debapp"},
        },
        "tarapp": {
            "description": "Release tarball",
            "version": {
                "strategy": "scraped_page",
                "page_url": "http://example.org/tarapp.html",
                "line_filter": "(?i)current",
                "link_pattern": r"tarapp-[\d.]+\.tar\.gz$",
                "version_pattern": r"^tarapp-(.+)\.tar\.gz$",
                "installed_from": "binary",
                "binary": "tarapp",
                "version_flag": "-v",
            },
            "source": {"kind": "download", "extract": True},
            "recipe": {"build_system": "autotools"},
        },
        "flagapp": {
            "description": "Single binary",
            "version": {
                "strategy": "version_flag",
                "binary": "{home}/flagapp/flagapp",
                "version_flag": "-v",
                "flag_pattern": r"(?i)version\s*([\w.]+)",
                "download_url": "http://example.org/dl/pilflag",
            },
            "source": {
                "kind": "download",
                "downloads": [{"url": "http://example.org/dl/pilflag", "executable": True}],
            },
            "recipe": {
                "build_system": "binary",
                "install": ["install -m 0755 {workspace}/pilflag {home}/flagapp/flagapp"],
            },
        },
        "pkgapp": {
            "description": "Vendor apt repository",
            "version": {"strategy": "package_manager", "package": "pkgapp"},
            "recipe": {
                "build_system": "apt",
                "apt_repository": {
                    "name": "vendor",
                    "line": "deb https://vendor.example.org/repo buster main",
                    "key_url": "https://vendor.example.org/key.gpg",
                },
            },
        },
        "os": {
            "description": "Operating system",
            "version": {"strategy": "always_installed"},
            "presence": {"always": True},
            "recipe": {"build_system": "apt_upgrade"},
        },
        "manual": {
            "description": "Installed by hand",
            "version": {"strategy": "never_auto_checked"},
        },
        "combo": {
            "description": "Two parts",
            "version": {"strategy": "always_installed"},
            "components": ["part-a", "part-b"],
        },
        "part-a": _git("part-a", build_system="script", hidden=True),
        "part-b": _git("part-b", build_system="script", hidden=True),
    },
}


def make_clone(settings: Settings, name: str) -> Path:
    """Fake an existing clone under the source root."""
    repo = settings.src_dir / name
    (repo / ".git").mkdir(parents=True)
    (repo / ".git" / "HEAD").write_text("ref: refs/heads/master\n")
    return repo


def write_file(name: str, content: bytes = b"payload"):
    """Responder for http.download that writes ``content`` to ``dest``."""

    def responder(context):
        dest = Path(context.param("dest"))
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
        return Receipt.success(adapter="http", action_id=context.action.id,
                               output=str(dest), metadata={"path": str(dest)})

    return responder


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    home = tmp_path / "home"
    home.mkdir()
    return Settings(
        src_dir=tmp_path / "src",
        share_dir=tmp_path / "share",
        home_dir=home,
        desktop_dir=tmp_path / "applications",
        swap_file=tmp_path / "dphys-swapfile",
        apt_lists_dir=tmp_path / "lists",
        stream_output=False,
        owner=getpass.getuser(),
    )


@pytest.fixture
def catalog():
    return parse_catalog(CATALOG_DATA, source="test-catalog")


@pytest.fixture
def adapters() -> dict[str, MockAdapter]:
    return {name: MockAdapter(adapter_name=name) for name in ADAPTER_NAMES}


@pytest.fixture
def registry(adapters) -> AdapterRegistry:
    registry = AdapterRegistry()
    for adapter in adapters.values():
        registry.register(adapter)
    return registry


@pytest.fixture
def ctx(settings, catalog, registry, tmp_path: Path) -> RunContext:
    guard = ExitGuard()
    context = RunContext(
        settings=settings,
        catalog=catalog,
        registry=registry,
        guard=guard,
        pi_model="rpi4",
        nproc=4,
    )
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    context.workspace = Workspace(guard=guard, base_dir=scratch)
    return context
