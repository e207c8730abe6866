"""
Run context — everything one updater invocation shares.

There is no module-level run state: the CLI builds one RunContext and
passes it into every component call. Per-application state (scratch
directory, source tree) lives in an AppJob that the planner creates
for each application and throws away afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from nexus_updater.adapters.registry import AdapterRegistry, default_registry
from nexus_updater.core.config.loader import Settings
from nexus_updater.core.engine.cleanup import ExitGuard
from nexus_updater.core.engine.swap import SwapManager
from nexus_updater.core.engine.workspace import Workspace
from nexus_updater.core.models.action import Action, Receipt
from nexus_updater.core.models.application import ApplicationSpec, Catalog
from nexus_updater.core.models.run import RunOutcome, RunRequest
from nexus_updater.core.services import hardware

logger = logging.getLogger(__name__)


@dataclass
class AppJob:
    """One application's pass through acquire and build."""

    app: ApplicationSpec
    workspace: Path
    source_dir: Path | None = None
    force: bool = False             # reinstall even when up to date

    @property
    def app_id(self) -> str:
        return self.app.id


@dataclass
class RunContext:
    settings: Settings
    catalog: Catalog
    registry: AdapterRegistry
    guard: ExitGuard = field(default_factory=ExitGuard)
    request: RunRequest = field(default_factory=RunRequest)
    pi_model: str = ""
    nproc: int = 1

    workspace: Workspace = field(init=False)
    swap: SwapManager = field(init=False)

    # per-run memoization
    installed_groups: set[str] = field(default_factory=set)
    prerequisite_outcomes: dict[str, RunOutcome] = field(default_factory=dict)
    forced_ids: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.workspace = Workspace(guard=self.guard)
        self.swap = SwapManager(
            self.call,
            self.settings.swap_file,
            self.settings.swap_size_mb,
            service=self.settings.swap_service,
            guard=self.guard,
        )

    @classmethod
    def create(
        cls,
        settings: Settings,
        catalog: Catalog,
        registry: AdapterRegistry | None = None,
        guard: ExitGuard | None = None,
        request: RunRequest | None = None,
    ) -> RunContext:
        """Context wired to the real host."""
        registry = registry or default_registry(
            stream_output=settings.stream_output,
            panel_command=settings.panel_refresh_command,
        )
        return cls(
            settings=settings,
            catalog=catalog,
            registry=registry,
            guard=guard or ExitGuard(),
            request=request or RunRequest(),
            pi_model=hardware.pi_model(),
            nproc=settings.build_jobs or hardware.cpu_count(),
        )

    @property
    def force(self) -> bool:
        return self.request.force

    # ── Adapter dispatch ────────────────────────────────────────

    def call(
        self,
        adapter: str,
        operation: str,
        app_id: str = "",
        tag: str | None = None,
        **params: Any,
    ) -> Receipt:
        """Send one action through the registry.

        Action ids read ``<app>:<adapter>.<tag or operation>``.
        """
        action = Action(
            id=f"{app_id or 'run'}:{adapter}.{tag or operation}",
            adapter=adapter,
            app_id=app_id,
            params={"operation": operation, **params},
        )
        receipt = self.registry.execute_action(action)
        if receipt.failed:
            logger.debug("%s failed: %s", action.id, receipt.error)
        return receipt

    # ── Paths and variables ─────────────────────────────────────

    def source_dir(self, app: ApplicationSpec) -> Path:
        return self.settings.src_dir / app.source_dirname

    def variables(self, job: AppJob | None = None, **extra: Any) -> dict[str, Any]:
        """Build variables for recipe steps and catalog paths."""
        values: dict[str, Any] = {
            "src_root": str(self.settings.src_dir),
            "share_dir": str(self.settings.share_dir),
            "home": str(self.settings.home_dir),
            "desktop_dir": str(self.settings.desktop_dir),
            "nproc": self.nproc,
            "pi_model": self.pi_model,
            "optimizations": f"--enable-optimizations={self.pi_model}" if self.pi_model else "",
            "version": "",
            "file": "",
            "workspace": "",
            "src": "",
        }
        if job is not None:
            values["workspace"] = str(job.workspace)
            if job.source_dir is not None:
                values["src"] = str(job.source_dir)
        values.update({k: v for k, v in extra.items() if v is not None})
        return values

    def expand(self, text: str, job: AppJob | None = None, **extra: Any) -> str:
        """Format ``text`` with build variables."""
        return text.format(**self.variables(job, **extra))
