"""
Adapter base — the protocol between the update engine and the host.

The engine never shells out, opens a URL or edits a desktop file
itself. Everything with a side effect is an adapter behind this
interface, which is what lets the planner run headless in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from nexus_updater.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    stream_output: bool = False
    params: dict[str, Any] = Field(default_factory=dict)

    def param(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.
    """

    #: operations this adapter understands; empty means "any"
    operations: frozenset[str] = frozenset()

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'shell', 'apt', 'git')."""

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        if not self.operations:
            return True, ""
        operation = context.param("operation", "")
        if not operation:
            return False, "Missing required param: 'operation'"
        if operation not in self.operations:
            valid = ", ".join(sorted(self.operations))
            return False, f"Unknown operation '{operation}'. Valid: {valid}"
        return True, ""

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt.

        MUST never raise exceptions.
        """

    # ── Receipt shortcuts ───────────────────────────────────────

    def _ok(self, ctx: ExecutionContext, output: str = "", **metadata: Any) -> Receipt:
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=output,
            metadata=metadata,
        )

    def _fail(self, ctx: ExecutionContext, error: str, **metadata: Any) -> Receipt:
        return Receipt.failure(
            adapter=self.name,
            action_id=ctx.action.id,
            error=error,
            metadata=metadata,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
