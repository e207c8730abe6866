"""
Update engine errors.

Components raise these internally and convert them to result objects
(AcquireFailure, InstallResult, RunOutcome) at their boundaries. The
``kind`` string travels into the report so the CLI banner and ``--json``
output can say what went wrong without parsing messages.
"""

from __future__ import annotations


class UpdaterError(Exception):
    """Base class for update engine failures."""

    kind = "error"

    def __init__(self, message: str, app_id: str | None = None, stage: str | None = None):
        super().__init__(message)
        self.app_id = app_id
        self.stage = stage


class TransientEnvironmentError(UpdaterError):
    """No connectivity, page layout changed, no candidate version."""

    kind = "transient"


class AcquireError(UpdaterError):
    """Clone, pull or download failed, or the download was empty."""

    kind = "acquire"


class BuildFailure(UpdaterError):
    """A bootstrap, configure or compile step exited non-zero."""

    kind = "build"


class InstallFailure(UpdaterError):
    """Registration or installation failed after a successful build."""

    kind = "install"


class DependencyInstallError(UpdaterError):
    """The batch dependency install failed. Always fatal for the run."""

    kind = "dependencies"
