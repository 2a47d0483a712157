"""Transaction templates, execution results and event decoding."""

from .events import EventDecoder, ExecutedEvents, decode_events, extract_raw_events
from .result import ExecutionResult
from .template import (
    ChainState,
    ExecutionHooks,
    TemplateOverrides,
    TransactionTemplate,
    TransactionTemplateContext,
)

__all__ = [
    "ChainState",
    "EventDecoder",
    "ExecutedEvents",
    "ExecutionHooks",
    "ExecutionResult",
    "TemplateOverrides",
    "TransactionTemplate",
    "TransactionTemplateContext",
    "decode_events",
    "extract_raw_events",
]
