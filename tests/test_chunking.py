from core.chunking import (
    MIN_CHUNK_BYTES,
    byte_length,
    chunk_envelopes,
    pack_chunks,
    serialize,
    stamp_bytes,
)


def make_envelope(index, total):
    return {
        "ok": True,
        "schemaVersion": "0.1",
        "capture": {"siteId": 123, "ts": 1718000000},
        "chunk": {"index": index, "of": total, "bytes": 0},
    }


def _device(i, pad=900, name="Device"):
    return {"deviceId": f"battery_monitor:{i}", "name": f"{name} {i}", "pad": "x" * pad}


def _wire_bytes(envelope):
    return len(serialize(envelope).encode("utf-8"))


def test_empty_input_yields_one_envelope():
    envelopes = chunk_envelopes([], make_envelope, 0)
    assert len(envelopes) == 1
    env = envelopes[0]
    assert env["devices"] == []
    assert env["chunk"]["index"] == 0
    assert env["chunk"]["of"] == 1
    assert env["chunk"]["bytes"] == _wire_bytes(env)


def test_chunks_cover_items_in_order_and_fit_budget():
    items = [_device(i) for i in range(60)]
    envelopes = chunk_envelopes(items, make_envelope, 8192)

    assert len(envelopes) > 1
    assert [d for env in envelopes for d in env["devices"]] == items
    for index, env in enumerate(envelopes):
        assert env["chunk"]["index"] == index
        assert env["chunk"]["of"] == len(envelopes)
        assert env["chunk"]["bytes"] == _wire_bytes(env)
        assert env["chunk"]["bytes"] <= 8192


def test_budget_below_minimum_is_raised():
    items = [_device(i) for i in range(20)]
    tiny = chunk_envelopes(items, make_envelope, 100)
    floor = chunk_envelopes(items, make_envelope, MIN_CHUNK_BYTES)
    assert [e["devices"] for e in tiny] == [e["devices"] for e in floor]


def test_oversized_item_gets_its_own_chunk():
    big = _device(1, pad=20000)
    items = [_device(0), big, _device(2)]
    envelopes = chunk_envelopes(items, make_envelope, 8192)

    assert [len(e["devices"]) for e in envelopes] == [1, 1, 1]
    assert envelopes[1]["devices"] == [big]
    assert envelopes[1]["chunk"]["bytes"] == _wire_bytes(envelopes[1])
    assert envelopes[1]["chunk"]["bytes"] > 8192


def test_bytes_count_utf8_not_characters():
    items = [_device(i, pad=10, name="Batterie Über ☀") for i in range(3)]
    env = chunk_envelopes(items, make_envelope, 8192)[0]
    assert env["chunk"]["bytes"] == _wire_bytes(env)
    assert env["chunk"]["bytes"] > len(serialize(env))


def test_chunking_is_deterministic():
    items = [_device(i) for i in range(40)]
    first = chunk_envelopes(items, make_envelope, 10000)
    second = chunk_envelopes(items, make_envelope, 10000)
    assert serialize(first) == serialize(second)


def test_stamp_bytes_settles_across_digit_boundary():
    # Padding chosen so the size lands near a power of ten.
    for pad in range(800, 1000):
        env = make_envelope(0, 1)
        env["devices"] = ["y" * pad]
        stamp_bytes(env)
        assert env["chunk"]["bytes"] == byte_length(env)


def test_pack_chunks_places_first_item_unconditionally():
    assert pack_chunks(["a" * 50], max_bytes=10) == [["a" * 50]]
    assert pack_chunks([], max_bytes=10) == []
