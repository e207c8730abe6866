"""
Mock adapter — scripted test double for any adapter name.

Register one MockAdapter per adapter name ("apt", "git", ...) and
script answers either for an exact action id (``"fldigi:git.pull"``)
or for every action of one operation (``"pull"``). Unscripted actions
succeed with empty output.
"""

from __future__ import annotations

from typing import Callable

from nexus_updater.adapters.base import Adapter, ExecutionContext
from nexus_updater.core.models.action import Receipt

Responder = Callable[[ExecutionContext], Receipt]


class MockAdapter(Adapter):
    """Universal mock adapter for testing."""

    def __init__(
        self,
        adapter_name: str = "mock",
        default_output: str = "",
    ):
        self._name = adapter_name
        self._default_output = default_output
        self._responses: dict[str, Receipt | Responder] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls(self, operation: str) -> list[ExecutionContext]:
        """Contexts received for one operation, in call order."""
        return [c for c in self._call_log if c.param("operation") == operation]

    def action_ids(self) -> list[str]:
        return [c.action.id for c in self._call_log]

    def set_response(self, key: str, receipt: Receipt | Responder) -> None:
        """Answer actions matching ``key`` (action id or operation)."""
        self._responses[key] = receipt

    def set_output(self, key: str, output: str, **metadata) -> None:
        self._responses[key] = Receipt.success(
            adapter=self._name,
            action_id=key,
            output=output,
            metadata=metadata,
        )

    def set_failure(self, key: str, error: str = "Mock failure") -> None:
        self._responses[key] = Receipt.failure(
            adapter=self._name,
            action_id=key,
            error=error,
        )

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)

        response = self._responses.get(context.action.id)
        if response is None:
            response = self._responses.get(context.param("operation", ""))
        if callable(response):
            return response(context)
        if response is not None:
            return response.model_copy(update={"action_id": context.action.id})

        return Receipt.success(
            adapter=self._name,
            action_id=context.action.id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
