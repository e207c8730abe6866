"""
Application catalog models.

An ApplicationSpec is everything the updater knows about one catalog
entry: how to tell which version is installed and which is current,
where the source or binary comes from, and the recipe that builds and
installs it. Entries are loaded once from YAML and frozen; the engine
treats them as read-only data.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class VersionStrategy(str, Enum):
    """How the installed and latest versions of an application are found."""

    PACKAGE_MANAGER = "package_manager"
    GIT_REPO = "git_repo"
    SCRAPED_PAGE = "scraped_page"
    VERSION_FLAG = "version_flag"
    ALWAYS_INSTALLED = "always_installed"
    NEVER_AUTO_CHECKED = "never_auto_checked"


class BuildSystem(str, Enum):
    AUTOTOOLS = "autotools"
    CMAKE = "cmake"
    SCRIPT = "script"
    DEB = "deb"
    BINARY = "binary"
    PYTHON_SETUP = "python_setup"
    APT = "apt"
    APT_UPGRADE = "apt_upgrade"
    NONE = "none"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class VersionCheck(_Frozen):
    """Version detection settings for one application."""

    strategy: VersionStrategy

    # package_manager / installed_from=package
    package: str | None = None

    # scraped_page
    page_url: str | None = None
    line_filter: str | None = None      # only consider lines matching this regex
    link_pattern: str | None = None     # regex the href must match
    version_pattern: str | None = None  # group 1 = version token in the file name

    # version_flag / installed_from=binary
    binary: str | None = None
    version_flag: str = "--version"
    flag_pattern: str = r"(\d+(?:\.\d+)+)"
    download_url: str | None = None     # candidate binary probed for its version

    installed_from: Literal["package", "binary"] = "package"

    @model_validator(mode="after")
    def _check_fields(self) -> VersionCheck:
        needed = {
            VersionStrategy.PACKAGE_MANAGER: ("package",),
            VersionStrategy.SCRAPED_PAGE: ("page_url", "link_pattern", "version_pattern"),
            VersionStrategy.VERSION_FLAG: ("binary", "download_url"),
        }.get(self.strategy, ())
        missing = [name for name in needed if not getattr(self, name)]
        if missing:
            raise ValueError(f"{self.strategy.value} check needs: {', '.join(missing)}")
        if self.strategy == VersionStrategy.SCRAPED_PAGE:
            if self.installed_from == "package" and not self.package:
                raise ValueError("scraped_page check with installed_from=package needs 'package'")
            if self.installed_from == "binary" and not self.binary:
                raise ValueError("scraped_page check with installed_from=binary needs 'binary'")
        return self


class Download(_Frozen):
    url: str
    filename: str | None = None
    executable: bool = False

    @property
    def name(self) -> str:
        return self.filename or self.url.rstrip("/").rsplit("/", 1)[-1]


class SourceSpec(_Frozen):
    """Where the bits come from."""

    kind: Literal["git", "download", "none"] = "none"
    url: str | None = None
    directory: str | None = None        # clone dir name under the source root
    branch: str | None = None
    downloads: tuple[Download, ...] = ()
    extract: bool = False               # unpack the first download (tarballs)

    @model_validator(mode="after")
    def _check_git(self) -> SourceSpec:
        if self.kind == "git" and not self.url:
            raise ValueError("git source needs 'url'")
        return self


class RecipeStep(_Frozen):
    """One shell step of a recipe.

    YAML may give a plain string, which becomes ``{run: <string>}``.
    Step text is formatted with the build variables (``{nproc}``,
    ``{src}``, ``{file}`` ...) before it runs.
    """

    run: str
    sudo: bool = False
    cwd: str | None = None
    optional: bool = False

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"run": value}
        return value


class DesktopEdit(_Frozen):
    file: str
    pattern: str
    replacement: str = ""


class DesktopEntry(_Frozen):
    file: str
    content: str


class DesktopIntegration(_Frozen):
    disable: tuple[str, ...] = ()
    edits: tuple[DesktopEdit, ...] = ()
    entries: tuple[DesktopEntry, ...] = ()
    refresh: bool = True

    @property
    def empty(self) -> bool:
        return not (self.disable or self.edits or self.entries)


class AptRepository(_Frozen):
    name: str
    line: str
    key_url: str | None = None


class Recipe(_Frozen):
    """How to build and install. Opaque to the planner."""

    build_system: BuildSystem = BuildSystem.NONE
    workdir: str | None = None          # relative to the source tree
    bootstrap: tuple[RecipeStep, ...] | None = None
    configure: tuple[RecipeStep, ...] | None = None
    build: tuple[RecipeStep, ...] | None = None
    install: tuple[RecipeStep, ...] | None = None
    pre_install: tuple[RecipeStep, ...] = ()   # after a good build, before replaced packages go
    post_install: tuple[RecipeStep, ...] = ()
    configure_args: str = ""
    clean_on_force: bool = True
    replaces_packages: tuple[str, ...] = ()
    hold_packages: tuple[str, ...] = ()
    apt_repository: AptRepository | None = None
    register_package: bool = False
    enlarge_swap: bool = False
    binaries: tuple[str, ...] = ()      # install targets for build_system=binary
    desktop: DesktopIntegration = Field(default_factory=DesktopIntegration)
    notice: str | None = None


class Prerequisite(_Frozen):
    app: str
    only_if_missing: bool = False

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"app": value}
        return value


class Presence(_Frozen):
    """Cheap local markers for the picker's Installed column."""

    always: bool = False
    binaries: tuple[str, ...] = ()
    files: tuple[str, ...] = ()
    package: str | None = None


class DependencyGroup(_Frozen):
    """Packages shared by several applications, installed once per run."""

    name: str
    packages: tuple[str, ...] = ()
    enable_source_repos: bool = False
    prerequisites: tuple[Prerequisite, ...] = ()


class ApplicationSpec(_Frozen):
    """One catalog entry."""

    id: str
    description: str
    help_url: str | None = None
    version: VersionCheck
    source: SourceSpec = Field(default_factory=SourceSpec)
    recipe: Recipe = Field(default_factory=Recipe)
    dependencies: tuple[str, ...] = ()
    dependency_groups: tuple[str, ...] = ()
    prerequisites: tuple[Prerequisite, ...] = ()
    components: tuple[str, ...] = ()
    optional: bool = False
    hidden: bool = False                # not offered in the picker
    presence: Presence = Field(default_factory=Presence)

    @field_validator("id")
    @classmethod
    def _lower_slug(cls, v: str) -> str:
        if not v or v != v.lower() or " " in v or "," in v:
            raise ValueError(f"application id must be a lower-case slug: {v!r}")
        return v

    @property
    def is_composite(self) -> bool:
        return bool(self.components)

    @property
    def source_dirname(self) -> str:
        """Directory under the source root holding this app's tree."""
        if self.source.directory:
            return self.source.directory
        if self.source.kind == "git" and self.source.url:
            name = self.source.url.rstrip("/").rsplit("/", 1)[-1]
            return name[:-4] if name.endswith(".git") else name
        return self.id


class Catalog(BaseModel):
    """The full application catalog."""

    model_config = ConfigDict(frozen=True)

    applications: dict[str, ApplicationSpec] = Field(default_factory=dict)
    dependency_groups: dict[str, DependencyGroup] = Field(default_factory=dict)

    def get(self, app_id: str) -> ApplicationSpec | None:
        return self.applications.get(app_id.lower())

    def __contains__(self, app_id: str) -> bool:
        return app_id.lower() in self.applications

    def visible(self) -> list[ApplicationSpec]:
        """Entries offered to the operator, sorted by id."""
        return sorted(
            (a for a in self.applications.values() if not a.hidden),
            key=lambda a: a.id,
        )
