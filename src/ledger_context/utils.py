"""Helper functions shared across the context graph."""

from __future__ import annotations

import inspect
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any

from hexbytes import HexBytes


async def maybe_await(value: Any) -> Any:
    """Await ``value`` when it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def serialise_value(value: Any) -> Any:
    """Serialise snapshots, results and raw bytes into JSON-friendly structures."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return serialise_value(asdict(value))
    if isinstance(value, Mapping):
        return {str(key): serialise_value(item) for key, item in value.items()}
    if isinstance(value, bytes | bytearray | HexBytes):
        return HexBytes(value).to_0x_hex()
    if isinstance(value, Sequence) and not isinstance(value, str):
        return [serialise_value(item) for item in value]
    if hasattr(value, "model_dump"):
        return serialise_value(value.model_dump())
    return value


def short_repr(value: Any, limit: int = 48) -> str:
    """Return a compact single-line rendering of a property value."""
    text = str(serialise_value(value))
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
