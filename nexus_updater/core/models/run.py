"""
Run request and report models.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class RunRequest(BaseModel):
    """What the operator asked for.

    Application ids are lower-cased and de-duplicated with the first
    occurrence winning, so ``fldigi,FLMSG,fldigi`` processes fldigi
    then flmsg.
    """

    applications: list[str] = Field(default_factory=list)
    force: bool = False
    self_update_check: bool = False
    dry_run: bool = False

    @field_validator("applications")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for app_id in v:
            key = app_id.strip().lower()
            if key and key not in seen:
                seen.append(key)
        return seen

    @classmethod
    def from_csv(cls, text: str, **kwargs: Any) -> RunRequest:
        return cls(applications=text.split(","), **kwargs)


class OutcomeStatus(str, Enum):
    SKIPPED = "skipped"
    UP_TO_DATE = "up_to_date"
    INSTALLED = "installed"
    UPDATED = "updated"
    FAILED = "failed"


class RunOutcome(BaseModel):
    id: str
    status: OutcomeStatus
    message: str = ""
    stage: str | None = None
    error_kind: str | None = None
    warnings: list[str] = Field(default_factory=list)
    installed_version: str | None = None
    latest_version: str | None = None
    fatal: bool = False

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED


class RunReport(BaseModel):
    """Ordered outcomes of one invocation."""

    outcomes: list[RunOutcome] = Field(default_factory=list)
    halted: bool = False
    halted_by: str | None = None
    self_updated: bool = False

    def add(self, outcome: RunOutcome) -> RunOutcome:
        """Record ``outcome``; a second pass for the same app replaces the first."""
        for i, existing in enumerate(self.outcomes):
            if existing.id == outcome.id:
                self.outcomes[i] = outcome
                return outcome
        self.outcomes.append(outcome)
        return outcome

    def get(self, app_id: str) -> RunOutcome | None:
        for outcome in self.outcomes:
            if outcome.id == app_id:
                return outcome
        return None

    @property
    def failures(self) -> list[RunOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def exit_code(self) -> int:
        return 1 if any(o.fatal for o in self.failures) else 0

    def to_dict(self) -> dict:
        return {
            "exit_code": self.exit_code,
            "halted": self.halted,
            "halted_by": self.halted_by,
            "self_updated": self.self_updated,
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
        }
