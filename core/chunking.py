# =============================================================================
# core/chunking.py  —  Byte-bounded response envelopes
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Splits an ordered list of JSON-able items into envelopes that each stay
#   under a byte budget, and stamps every envelope with its own exact size:
#
#     {"ok":true,"schemaVersion":"0.1","capture":{...},
#      "chunk":{"index":0,"of":3,"bytes":8123},"devices":[...]}
#
#   RULES:
#     - effective budget = max(8192, requested)
#     - the first item of a chunk is always placed, so a single oversized
#       item still makes progress (it gets a chunk of its own)
#     - chunk.bytes is the UTF-8 length of serialize(envelope), bytes field
#       included
#     - empty input still yields exactly one (empty) envelope
#
#   serialize() is the one serializer used both for sizing here and for the
#   text the tool server emits, so the stamped size is the size on the wire.
# =============================================================================

import json
from typing import Any, Callable, Iterable

MIN_CHUNK_BYTES = 8192

# Room left in the running total for the index/of/bytes numbers to grow
# past the width they had when the skeleton was measured.
_ENVELOPE_SLACK = 32

EnvelopeFactory = Callable[[int, int], dict]


def serialize(value: Any) -> str:
    """Compact JSON, non-ASCII kept as-is (sized as UTF-8)."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def byte_length(value: Any) -> int:
    return len(serialize(value).encode("utf-8"))


def effective_budget(max_bytes: int) -> int:
    return max(MIN_CHUNK_BYTES, int(max_bytes))


def _envelope_overhead(make_envelope: EnvelopeFactory, payload_key: str) -> int:
    skeleton = make_envelope(0, 1)
    skeleton[payload_key] = []
    return byte_length(skeleton) + _ENVELOPE_SLACK


def pack_chunks(
    items: Iterable[Any],
    max_bytes: int,
    overhead: int = 0,
) -> list[list[Any]]:
    """Greedy packing of items into chunks under `max_bytes`.

    Each item costs its serialized size plus one separator byte; `overhead`
    is charged once per chunk.  A chunk's first item is placed
    unconditionally.
    """
    chunks: list[list[Any]] = []
    current: list[Any] = []
    current_bytes = overhead

    for item in items:
        item_bytes = byte_length(item) + 1
        if current and current_bytes + item_bytes > max_bytes:
            chunks.append(current)
            current = [item]
            current_bytes = overhead + item_bytes
        else:
            current.append(item)
            current_bytes += item_bytes

    if current:
        chunks.append(current)
    return chunks


def stamp_bytes(envelope: dict) -> dict:
    """Write the envelope's exact serialized size into chunk.bytes.

    Repeats until the number stops changing, since writing it can change
    its own width.
    """
    chunk = envelope.setdefault("chunk", {})
    chunk["bytes"] = 0
    while True:
        size = byte_length(envelope)
        if size == chunk["bytes"]:
            return envelope
        chunk["bytes"] = size


def chunk_envelopes(
    items: Iterable[Any],
    make_envelope: EnvelopeFactory,
    max_bytes: int,
    payload_key: str = "devices",
) -> list[dict]:
    """Pack `items` into envelopes built by `make_envelope(index, total)`.

    Args:
        items: Ordered JSON-able payload items.
        make_envelope: Returns the envelope skeleton (with a "chunk" dict)
            for a given chunk index and final chunk count.
        max_bytes: Requested budget; raised to MIN_CHUNK_BYTES if smaller.
        payload_key: Key under which each chunk's items are attached.

    Returns:
        One or more envelopes whose payloads, concatenated, equal `items`.
    """
    budget = effective_budget(max_bytes)
    chunks = pack_chunks(items, budget, _envelope_overhead(make_envelope, payload_key))
    if not chunks:
        chunks = [[]]

    envelopes = []
    for index, payload in enumerate(chunks):
        envelope = make_envelope(index, len(chunks))
        envelope[payload_key] = payload
        envelopes.append(stamp_bytes(envelope))
    return envelopes
