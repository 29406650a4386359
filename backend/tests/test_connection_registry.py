"""Tests for storypoint.services.connection_registry."""

import asyncio
import json

from conftest import FakeConnection, run
from storypoint.services.connection_registry import (
    ConnectionIdentity,
    ConnectionRegistry,
    ConnectionRole,
    WebSocketConnection,
)


class RecordingSocket:
    """Stands in for a starlette WebSocket and keeps what was written."""

    def __init__(self, fail=False):
        self.sent = []
        self.close_codes = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(json.loads(text))

    async def close(self, code=1000):
        self.close_codes.append(code)


def participant(session_id, participant_id):
    return ConnectionIdentity(session_id=session_id, role=ConnectionRole.PARTICIPANT, participant_id=participant_id)


def host(session_id, host_id=1):
    return ConnectionIdentity(session_id=session_id, role=ConnectionRole.HOST, host_id=host_id)


class TestConnectionRegistry:

    def test_broadcast_reaches_only_the_session(self):
        registry = ConnectionRegistry()
        alice, bob, outsider = FakeConnection(), FakeConnection(), FakeConnection()
        registry.bind(alice, participant("s1", "a"))
        registry.bind(bob, host("s1"))
        registry.bind(outsider, participant("s2", "o"))

        delivered = registry.broadcast("s1", {"type": "ping"})
        assert delivered == 2
        assert alice.messages == [{"type": "ping"}]
        assert bob.messages == [{"type": "ping"}]
        assert outsider.messages == []

    def test_broadcast_exclude(self):
        registry = ConnectionRegistry()
        alice, bob = FakeConnection(), FakeConnection()
        registry.bind(alice, participant("s1", "a"))
        registry.bind(bob, participant("s1", "b"))

        registry.broadcast("s1", {"type": "participant_joined"}, exclude=[alice])
        assert alice.messages == []
        assert bob.types() == ["participant_joined"]

    def test_broadcast_counts_failed_sends(self):
        registry = ConnectionRegistry()
        alive, dead = FakeConnection(), FakeConnection()
        dead.closed = True
        registry.bind(alive, participant("s1", "a"))
        registry.bind(dead, participant("s1", "b"))

        assert registry.broadcast("s1", {"type": "x"}) == 1
        # A failed send does not unregister; the disconnect path does that
        assert registry.identity_of(dead) is not None

    def test_broadcast_to_empty_session(self):
        assert ConnectionRegistry().broadcast("nobody", {"type": "x"}) == 0

    def test_unbound_connection_gets_no_broadcast(self):
        registry = ConnectionRegistry()
        lurker = FakeConnection()
        registry.add(lurker)
        registry.broadcast("s1", {"type": "x"})
        assert lurker.messages == []
        assert registry.identity_of(lurker) is None
        assert len(registry) == 1

    def test_remove_returns_identity(self):
        registry = ConnectionRegistry()
        alice = FakeConnection()
        identity = participant("s1", "a")
        registry.bind(alice, identity)

        assert registry.remove(alice) == identity
        assert registry.remove(alice) is None
        assert registry.connections_for("s1") == []
        assert len(registry) == 0

    def test_participant_connection_lookup(self):
        registry = ConnectionRegistry()
        alice = FakeConnection()
        registry.bind(alice, participant("s1", "a"))
        assert registry.participant_connection("s1", "a") is alice
        assert registry.participant_connection("s1", "b") is None
        assert registry.participant_connection("s2", "a") is None

    def test_unbind_session_keeps_connections_open(self):
        registry = ConnectionRegistry()
        alice, other = FakeConnection(), FakeConnection()
        registry.bind(alice, participant("s1", "a"))
        registry.bind(other, participant("s2", "o"))

        released = registry.unbind_session("s1")
        assert released == [alice]
        assert registry.identity_of(alice) is None
        assert registry.get(alice.id) is alice
        assert registry.connections_for("s2") == [other]


class TestWebSocketConnection:

    def test_pump_sends_in_order_then_stops(self):
        async def scenario():
            socket = RecordingSocket()
            connection = WebSocketConnection(socket)
            for index in range(3):
                assert connection.send({"type": "n", "index": index})
            connection.close()
            await asyncio.wait_for(connection.pump(), timeout=1)
            return socket

        socket = run(scenario())
        assert [message["index"] for message in socket.sent] == [0, 1, 2]
        assert socket.close_codes == []

    def test_send_after_close_is_refused(self):
        async def scenario():
            connection = WebSocketConnection(RecordingSocket())
            connection.close()
            return connection.send({"type": "late"})

        assert run(scenario()) is False

    def test_overflow_marks_connection_dead(self):
        async def scenario():
            socket = RecordingSocket()
            connection = WebSocketConnection(socket, max_pending=2)
            results = [connection.send({"type": "n", "index": index}) for index in range(3)]
            assert connection.closed
            await asyncio.wait_for(connection.pump(), timeout=1)
            return results, socket

        results, socket = run(scenario())
        assert results == [True, True, False]
        # The slow consumer gets one more write, then is closed as "try again later"
        assert [message["index"] for message in socket.sent] == [0]
        assert socket.close_codes == [1013]

    def test_pump_stops_on_write_failure(self):
        async def scenario():
            connection = WebSocketConnection(RecordingSocket(fail=True))
            connection.send({"type": "n"})
            await asyncio.wait_for(connection.pump(), timeout=1)
            return connection

        assert run(scenario()).closed
