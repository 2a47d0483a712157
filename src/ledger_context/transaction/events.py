"""Event extraction from execution logs."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..constants import EVENT_DISCRIMINATOR_LENGTH, PROGRAM_DATA_LOG_PREFIX
from ..utils import serialise_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventDecoder:
    """Decoder for one event type, selected by its leading discriminator."""

    discriminator: bytes
    decode: Callable[[bytes], Any]

    def __post_init__(self) -> None:
        if len(self.discriminator) != EVENT_DISCRIMINATOR_LENGTH:
            raise ValueError(
                f"Event discriminator must be {EVENT_DISCRIMINATOR_LENGTH} bytes, "
                f"got {len(self.discriminator)}"
            )


@dataclass
class ExecutedEvents:
    """Decoded events bucketed by name, plus the raw payloads nobody claimed."""

    buckets: dict[str, list[Any]] = field(default_factory=dict)
    unknown: list[bytes] = field(default_factory=list)

    def __getitem__(self, name: str) -> list[Any]:
        return self.buckets.get(name, [])

    def __contains__(self, name: object) -> bool:
        return name in self.buckets

    def __len__(self) -> int:
        return sum(len(events) for events in self.buckets.values()) + len(self.unknown)

    @property
    def names(self) -> list[str]:
        return list(self.buckets)

    def first(self, name: str) -> Any | None:
        events = self.buckets.get(name)
        return events[0] if events else None

    def to_json(self) -> dict[str, Any]:
        return {
            "events": serialise_value(self.buckets),
            "unknown": serialise_value(self.unknown),
        }


def extract_raw_events(logs: Iterable[str]) -> list[bytes]:
    """Collect base64 payloads from ``Program data:`` log lines."""
    raw: list[bytes] = []
    for line in logs:
        if not line.startswith(PROGRAM_DATA_LOG_PREFIX):
            continue
        encoded = line[len(PROGRAM_DATA_LOG_PREFIX) :].strip()
        try:
            raw.append(base64.b64decode(encoded, validate=True))
        except (binascii.Error, ValueError):
            logger.debug("Skipping malformed program data log line: %r", line)
    return raw


def decode_events(
    raw_events: Iterable[bytes], decoders: Mapping[str, EventDecoder]
) -> ExecutedEvents:
    events = ExecutedEvents()
    for payload in raw_events:
        prefix = payload[:EVENT_DISCRIMINATOR_LENGTH]
        name = next(
            (name for name, decoder in decoders.items() if decoder.discriminator == prefix),
            None,
        )
        if name is None:
            events.unknown.append(payload)
            continue

        try:
            decoded = decoders[name].decode(payload[EVENT_DISCRIMINATOR_LENGTH:])
        except Exception as exc:
            logger.debug("Failed to decode %s event: %s", name, exc)
            events.unknown.append(payload)
            continue
        events.buckets.setdefault(name, []).append(decoded)
    return events
