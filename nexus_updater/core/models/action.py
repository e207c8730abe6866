"""
Action and Receipt models — the contract between engines and adapters.

Engines describe a side effect as an Action (run this step, fetch this
repository, install these packages) and adapters answer with a Receipt.
Adapters never raise: a failed apt install or a dead URL comes back as
a Receipt with ``status="failed"``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ReceiptStatus = Literal["ok", "skipped", "failed"]


class Action(BaseModel):
    """A requested side effect, dispatched through the adapter registry.

    Action ids follow ``<app>:<adapter>.<operation>`` so tests can script
    the answer for one application without touching the others.
    """

    id: str
    adapter: str
    app_id: str = ""                # catalog application this serves
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def operation(self) -> str:
        return str(self.params.get("operation", ""))


class Receipt(BaseModel):
    """What an adapter reports back for one Action."""

    adapter: str
    action_id: str
    status: ReceiptStatus = "ok"
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    duration_ms: int = 0
    output: str = ""
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **extra: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, output=output, **extra)

    @classmethod
    def failure(cls, adapter: str, action_id: str, error: str, **extra: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, status="failed", error=error, **extra)

    @classmethod
    def skip(cls, adapter: str, action_id: str, reason: str = "", **extra: Any) -> Receipt:
        """Nothing was done; ``reason`` lands in ``output`` for the log."""
        return cls(adapter=adapter, action_id=action_id, status="skipped", output=reason, **extra)
