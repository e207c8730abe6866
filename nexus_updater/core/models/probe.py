"""
Per-application results produced while processing one request entry:
the version probe, the acquired artifact and the install result.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class VersionProbe(BaseModel):
    """Installed vs. latest version for one application.

    ``comparable=False`` means the latest version could not be
    determined (or is never checked automatically). It must never be
    read as "up to date".
    """

    app_id: str
    installed_version: str | None = None
    latest_version: str | None = None
    comparable: bool = True
    download_url: str | None = None
    staged_file: str | None = None      # candidate already downloaded while probing
    message: str = ""
    error_kind: str | None = None
    components: dict[str, VersionProbe] = Field(default_factory=dict)

    @property
    def installed(self) -> bool:
        return self.installed_version is not None

    @property
    def is_up_to_date(self) -> bool:
        if self.components:
            return all(p.is_up_to_date for p in self.components.values())
        return (
            self.comparable
            and self.installed_version is not None
            and self.latest_version is not None
            and self.installed_version == self.latest_version
        )

    def stale_components(self) -> list[str]:
        return [cid for cid, p in self.components.items() if not p.is_up_to_date]


class Artifact(BaseModel):
    """What the Acquirer handed to the Builder."""

    app_id: str
    kind: str                           # git | download | none
    source_dir: Path | None = None
    files: list[Path] = Field(default_factory=list)
    version: str | None = None
    changed: bool = True

    @property
    def file(self) -> Path | None:
        return self.files[0] if self.files else None


class AcquireFailure(BaseModel):
    app_id: str
    error: str
    error_kind: str = "acquire"


class BuildStage(str, Enum):
    """Ordered stages of the Builder state machine."""

    FETCHED = "fetched"
    DEPENDENCIES_SATISFIED = "dependencies_satisfied"
    CONFIGURED = "configured"
    BUILT = "built"
    INSTALLED = "installed"
    DESKTOP_INTEGRATED = "desktop_integrated"


class InstallResult(BaseModel):
    app_id: str
    stage: BuildStage = BuildStage.FETCHED
    failed_stage: str | None = None
    error: str | None = None
    error_kind: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_stage is None
