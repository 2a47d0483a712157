"""Outcome of an executed transaction."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from ..types import Signature
from ..utils import serialise_value
from .events import ExecutedEvents


@dataclass(frozen=True)
class ExecutionResult:
    """Confirmed execution with its decoded events.

    ``iteration`` counts submissions within a chained run, starting at 1.
    ``pending_args`` is only set when a chain stopped at its iteration limit
    while the decider still asked for more work.
    """

    args: Any
    events: ExecutedEvents
    succeeded: bool
    signature: Signature
    slot: int | None = None
    logs: tuple[str, ...] = ()
    error: Any | None = None
    iteration: int = 1
    pending_args: Any | None = field(default=None, compare=False)

    @property
    def truncated(self) -> bool:
        return self.pending_args is not None

    def with_pending_args(self, pending_args: Any) -> ExecutionResult:
        return replace(self, pending_args=pending_args)

    def to_json(self) -> dict[str, Any]:
        return {
            "args": serialise_value(self.args),
            "succeeded": self.succeeded,
            "signature": self.signature,
            "slot": self.slot,
            "error": serialise_value(self.error),
            "iteration": self.iteration,
            "pending_args": serialise_value(self.pending_args),
            **self.events.to_json(),
        }
