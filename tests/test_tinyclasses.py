import socket

import pytest

from buflea.tinyclasses import (
    Bucket,
    ByteStats,
    SinOut,
    bind_listener_socket,
    bind_udp_socket,
    parse_bind_address,
    receive_some,
)


def test_bucket_push_until_full():
    bucket = Bucket(3)
    assert [bucket.push(x) for x in "abcd"] == [True, True, True, False]
    assert len(bucket) == 3
    assert list(bucket) == ["a", "b", "c"]


def test_bucket_pop_returns_last_then_none():
    bucket = Bucket(2)
    bucket.push(1)
    bucket.push(2)
    assert bucket.pop() == 2
    assert bucket.pop() == 1
    assert bucket.pop() is None


def test_bucket_remove_moves_last_into_place():
    bucket = Bucket(5)
    for x in "abcd":
        bucket.push(x)
    bucket.remove(1)
    assert list(bucket) == ["a", "d", "c"]
    bucket.remove(2)
    assert list(bucket) == ["a", "d"]


def test_bucket_remove_on_empty_is_noop_and_bad_index_raises():
    bucket = Bucket(2)
    bucket.remove(0)
    assert len(bucket) == 0
    bucket.push("x")
    with pytest.raises(IndexError):
        bucket.remove(5)


def test_bucket_clear_and_getitem():
    bucket = Bucket(4)
    bucket.push("x")
    bucket.push("y")
    assert bucket[1] == "y"
    bucket.clear()
    assert len(bucket) == 0
    with pytest.raises(IndexError):
        bucket[0]
    assert bucket.push("z") is True


def test_bytestats_reset_spin_keeps_totals():
    stats = ByteStats()
    stats.temp_bytes[ByteStats.IN] = 10
    stats.temp_bytes[ByteStats.OUT] = 20
    stats.bps_spin[ByteStats.IN] = 3
    stats.bps_spin[ByteStats.OUT] = 4
    stats.total_bytes[ByteStats.IN] = 100
    stats.reset_spin()
    assert stats.temp_bytes[:2] == [0, 0]
    assert stats.bps_spin[:2] == [0, 0]
    assert stats.total_bytes[ByteStats.IN] == 100


def test_sinout_accumulates():
    totals = SinOut()
    totals.inbound += 7
    totals.outbound += 9
    assert (totals.inbound, totals.outbound) == (7, 9)


def test_parse_bind_address_variants():
    assert parse_bind_address("udp:*:5353") == (None, 5353)
    assert parse_bind_address("tcp:127.0.0.1:8080") == ("127.0.0.1", 8080)


def test_parse_bind_address_without_port():
    with pytest.raises(ValueError):
        parse_bind_address("udp:127.0.0.1")


def test_listener_socket_is_nonblocking_and_accepts():
    listener = bind_listener_socket("tcp:127.0.0.1:0")
    client = socket.create_connection(listener.getsockname(), timeout=2)
    try:
        assert listener.getblocking() is False
        listener.settimeout(2)
        conn, _ = listener.accept()
        conn.close()
        assert client.getpeername() == listener.getsockname()
    finally:
        client.close()
        listener.close()