"""
Unit tests for ConnectionHub.
"""

import asyncio

import pytest

from requestbox.broadcast import Connection, ConnectionHub


class FakeWebSocket:
    """Records what the server sends."""

    def __init__(self, fail=False):
        self.sent = []
        self.closed_with = None
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    async def close(self, code=1000):
        self.closed_with = code


@pytest.fixture
def hub():
    return ConnectionHub()


def test_broadcast_reaches_everyone(hub):
    sockets = [FakeWebSocket() for _ in range(3)]
    for i, ws in enumerate(sockets):
        hub.add(Connection(ws, connection_id=f"c{i}"))

    delivered = asyncio.run(hub.broadcast("updateHeaderColor", "#fff"))

    assert delivered == 3
    for ws in sockets:
        assert ws.sent == [{"event": "updateHeaderColor", "data": "#fff"}]


def test_send_targets_one_connection(hub):
    alice, bob = FakeWebSocket(), FakeWebSocket()
    hub.add(Connection(alice, connection_id="alice"))
    hub.add(Connection(bob, connection_id="bob"))

    assert asyncio.run(hub.send("alice", "updateSongHistory", [])) is True

    assert alice.sent == [{"event": "updateSongHistory", "data": []}]
    assert bob.sent == []


def test_send_to_unknown_connection(hub):
    assert asyncio.run(hub.send("ghost", "anything")) is False


def test_dead_connections_are_dropped(hub):
    good, dead = FakeWebSocket(), FakeWebSocket(fail=True)
    hub.add(Connection(good, connection_id="good"))
    hub.add(Connection(dead, connection_id="dead"))

    delivered = asyncio.run(hub.broadcast("updateSongQueue", []))

    assert delivered == 1
    assert hub.get("dead") is None
    assert hub.get("good") is not None


def test_close_all(hub):
    sockets = [FakeWebSocket(), FakeWebSocket()]
    for i, ws in enumerate(sockets):
        hub.add(Connection(ws, connection_id=f"c{i}"))

    asyncio.run(hub.close_all())

    assert len(hub) == 0
    assert all(ws.closed_with == 1012 for ws in sockets)


def test_stop_accepting(hub):
    assert hub.accepting is True
    hub.stop_accepting()
    assert hub.accepting is False


def test_generated_connection_ids_are_unique():
    assert Connection(FakeWebSocket()).id != Connection(FakeWebSocket()).id


class StalledWebSocket(FakeWebSocket):
    """Never finishes accepting a message."""

    async def send_json(self, message):
        await asyncio.sleep(60)


def test_stalled_connection_does_not_block_others():
    hub = ConnectionHub(send_timeout=0.05)
    stalled, first, second = StalledWebSocket(), FakeWebSocket(), FakeWebSocket()
    hub.add(Connection(stalled, connection_id="stalled"))
    hub.add(Connection(first, connection_id="first"))
    hub.add(Connection(second, connection_id="second"))

    delivered = asyncio.run(hub.broadcast("updateTitle", "Party"))

    assert delivered == 2
    assert first.sent == second.sent == [{"event": "updateTitle", "data": "Party"}]
    assert hub.get("stalled") is None


def test_send_times_out_on_stalled_connection():
    hub = ConnectionHub(send_timeout=0.05)
    hub.add(Connection(StalledWebSocket(), connection_id="stalled"))

    assert asyncio.run(hub.send("stalled", "updateTitle", "Party")) is False
    assert hub.get("stalled") is None


def test_revoke_operator(hub):
    hub.add(Connection(FakeWebSocket(), connection_id="a", is_operator=True, operator_token="t1"))
    hub.add(Connection(FakeWebSocket(), connection_id="b", is_operator=True, operator_token="t2"))
    hub.add(Connection(FakeWebSocket(), connection_id="c"))

    assert hub.revoke_operator("t1") == 1

    assert hub.get("a").is_operator is False
    assert hub.get("b").is_operator is True
    assert hub.get("c").is_operator is False
