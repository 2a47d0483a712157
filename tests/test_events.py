"""Tests for event extraction and decoding."""

from __future__ import annotations

import base64
import struct

import pytest

from ledger_context.transaction.events import (
    EventDecoder,
    decode_events,
    extract_raw_events,
)

DEPOSITED = b"deposit\x00"
WITHDRAWN = b"withdraw"


def _amount(body: bytes) -> int:
    return struct.unpack("<Q", body)[0]


DECODERS = {
    "deposited": EventDecoder(DEPOSITED, _amount),
    "withdrawn": EventDecoder(WITHDRAWN, _amount),
}


def test_extract_raw_events_from_program_data_logs() -> None:
    payload = DEPOSITED + struct.pack("<Q", 5)
    logs = [
        "Program Prog invoke [1]",
        f"Program data: {base64.b64encode(payload).decode()}",
        "Program data: !!not-base64!!",
        "Program Prog success",
    ]

    assert extract_raw_events(logs) == [payload]


def test_events_are_bucketed_by_name() -> None:
    raw = [
        DEPOSITED + struct.pack("<Q", 5),
        WITHDRAWN + struct.pack("<Q", 2),
        DEPOSITED + struct.pack("<Q", 7),
        b"unknown\x00" + b"\x01",
    ]

    events = decode_events(raw, DECODERS)

    assert events["deposited"] == [5, 7]
    assert events.first("withdrawn") == 2
    assert events["missing"] == []
    assert events.first("missing") is None
    assert events.unknown == [b"unknown\x00\x01"]
    assert events.names == ["deposited", "withdrawn"]
    assert len(events) == 4


def test_failed_decode_leaves_event_unknown() -> None:
    broken = DEPOSITED + b"\x01"

    events = decode_events([broken], DECODERS)

    assert "deposited" not in events
    assert events.unknown == [broken]
    assert events.to_json() == {"events": {}, "unknown": ["0x" + broken.hex()]}


def test_discriminator_length_is_checked() -> None:
    with pytest.raises(ValueError):
        EventDecoder(b"short", _amount)
