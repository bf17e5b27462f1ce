# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

from adapters.translation.base import UpstreamState
from adapters.translation.realtime import RealtimeTranslationSession
from session.client_connection import ClientConnection, DeviceInfo
from session.registry import ConnectionRegistry
from fakes import (
    FakeBackendSocket,
    FakeConnector,
    FakeSession,
    FakeTransport,
    RecordingSleep,
    settle,
)


def speech_frame(audio: str, **extra: Any) -> str:
    data = {"metadata": {"startTime": 0, "endTime": 250}, "audioBase64": audio}
    data.update(extra)
    return json.dumps({"type": 0, "data": data})


class SessionBook:
    """Session factory that keeps every FakeSession it builds."""

    def __init__(self) -> None:
        self.sessions: dict[str, FakeSession] = {}

    def __call__(self, client_id: str, listener: Any) -> FakeSession:
        session = FakeSession(client_id, listener)
        self.sessions[client_id] = session
        return session


# ---------------------------------------------------------------------
# Accept / register
# ---------------------------------------------------------------------

def test_accept_pairs_connection_with_its_own_session():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        transport = FakeTransport()

        connection = await registry.accept(transport, DeviceInfo(user_agent="pytest"))

        assert connection.id.startswith("client_")
        assert connection.id in registry
        assert len(registry) == 1
        assert registry.get(connection.id) is connection
        assert connection.device_info.user_agent == "pytest"

        session = book.sessions[connection.id]
        assert connection.upstream_session is session
        assert session.connect_calls == 1
        assert connection.log_context()["upstream_state"] == "CONNECTING"

    asyncio.run(scenario())


def test_register_existing_identity_is_noop():
    book = SessionBook()
    registry = ConnectionRegistry(session_factory=book)
    first = ClientConnection(id="client_a", transport=FakeTransport(), device_info=DeviceInfo())
    second = ClientConnection(id="client_a", transport=FakeTransport(), device_info=DeviceInfo())

    assert registry.register(first) is True
    assert registry.register(second) is False
    assert registry.get("client_a") is first
    assert list(registry.connection_ids()) == ["client_a"]


# ---------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------

def test_speech_frames_forwarded_with_data_uri_stripped():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        connection = await registry.accept(FakeTransport())

        await registry.on_message(connection.id, speech_frame("data:audio/webm;base64,AAA"))
        await registry.on_message(connection.id, speech_frame("BBB"))

        assert book.sessions[connection.id].appended == ["AAA", "BBB"]

    asyncio.run(scenario())


def test_bad_frames_are_dropped_and_connection_kept():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        transport = FakeTransport()
        connection = await registry.accept(transport)

        await registry.on_message(connection.id, "not json")
        await registry.on_message(connection.id, b"\x00\x01binary")
        await registry.on_message(connection.id, json.dumps({"type": 1, "data": {"text": "PONG"}}))
        await registry.on_message(connection.id, json.dumps({"type": 0, "data": {}}))
        await registry.on_message(connection.id, json.dumps({"type": 7, "data": {"audioBase64": "x"}}))

        assert book.sessions[connection.id].appended == []
        assert connection.id in registry
        assert transport.open is True
        assert transport.sent == []

    asyncio.run(scenario())


def test_frames_for_unknown_or_closed_connections_are_ignored():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        transport = FakeTransport()
        connection = await registry.accept(transport)

        await registry.on_message("client_missing", speech_frame("AAA"))
        transport.open = False
        await registry.on_message(connection.id, speech_frame("BBB"))

        assert book.sessions[connection.id].appended == []

    asyncio.run(scenario())


def test_clients_are_isolated():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        t1, t2 = FakeTransport(), FakeTransport()
        c1 = await registry.accept(t1)
        c2 = await registry.accept(t2)

        await registry.on_message(c1.id, speech_frame("ONE"))
        await registry.on_message(c2.id, speech_frame("TWO"))
        await book.sessions[c1.id].listener.on_text_done("only for one")

        assert book.sessions[c1.id].appended == ["ONE"]
        assert book.sessions[c2.id].appended == ["TWO"]
        assert t1.sent == [{"type": 0, "data": {"text": "only for one"}}]
        assert t2.sent == []

        await registry.on_close(c1.id)
        assert book.sessions[c1.id].disconnect_calls == 1
        assert book.sessions[c2.id].disconnect_calls == 0
        assert c2.id in registry

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Relay listener
# ---------------------------------------------------------------------

def test_listener_drops_text_when_transport_closed_or_failing():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        closed = FakeTransport()
        failing = FakeTransport(fail_send=True)
        c1 = await registry.accept(closed)
        c2 = await registry.accept(failing)

        closed.open = False
        await book.sessions[c1.id].listener.on_text_delta("lost")
        await book.sessions[c2.id].listener.on_text_delta("lost too")
        await book.sessions[c2.id].listener.on_error(RuntimeError("boom"))

        assert closed.sent == []
        assert failing.sent == []

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Close
# ---------------------------------------------------------------------

def test_close_tears_down_exactly_once():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        connection = await registry.accept(FakeTransport())

        await asyncio.gather(
            registry.on_close(connection.id, reason="close"),
            registry.on_close(connection.id, reason="error"),
        )
        await registry.on_close(connection.id)

        assert connection.id not in registry
        assert book.sessions[connection.id].disconnect_calls == 1

        await registry.on_message(connection.id, speech_frame("AAA"))
        assert book.sessions[connection.id].appended == []

    asyncio.run(scenario())


def test_failing_disconnect_is_contained():
    class BrokenSession(FakeSession):
        async def disconnect(self) -> None:
            await super().disconnect()
            raise RuntimeError("backend gone")

    async def scenario() -> None:
        registry = ConnectionRegistry(session_factory=BrokenSession)
        connection = await registry.accept(FakeTransport())

        await registry.on_close(connection.id)
        assert len(registry) == 0

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------

def test_sweep_pings_and_answers_pong_with_envelope():
    async def scenario() -> None:
        registry = ConnectionRegistry(session_factory=SessionBook())
        live, dead = FakeTransport(), FakeTransport()
        await registry.accept(live)
        await registry.accept(dead)
        dead.open = False

        await registry.sweep()
        assert len(live.pong_waiters) == 1
        assert dead.pong_waiters == []

        live.pong_waiters[0].set_result(0.001)
        await settle()

        assert live.sent == [{"type": 1, "data": {"text": "PONG"}}]

    asyncio.run(scenario())


def test_pong_waiter_released_on_close():
    async def scenario() -> None:
        registry = ConnectionRegistry(session_factory=SessionBook())
        transport = FakeTransport()
        connection = await registry.accept(transport)

        await registry.sweep()
        assert registry.pending_pongs == 1

        await registry.on_close(connection.id)
        await settle()

        assert registry.pending_pongs == 0
        assert transport.pong_waiters[0].cancelled()
        assert transport.sent == []

    asyncio.run(scenario())


def test_unanswered_ping_is_not_repeated():
    async def scenario() -> None:
        registry = ConnectionRegistry(session_factory=SessionBook())
        silent = FakeTransport()
        await registry.accept(silent)

        for _ in range(5):
            await registry.sweep()
            await settle()

        assert len(silent.pong_waiters) == 1
        assert registry.pending_pongs == 1

        # Once answered, the next sweep pings again
        silent.pong_waiters[0].set_result(0.001)
        await settle()
        assert registry.pending_pongs == 0
        assert silent.sent == [{"type": 1, "data": {"text": "PONG"}}]

        await registry.sweep()
        assert len(silent.pong_waiters) == 2

    asyncio.run(scenario())


def test_slow_client_does_not_stall_sweep():
    async def scenario() -> None:
        registry = ConnectionRegistry(session_factory=SessionBook())
        gate = asyncio.Event()
        slow = FakeTransport(ping_gate=gate)
        fast = FakeTransport(auto_pong=True)
        await registry.accept(slow)
        await registry.accept(fast)

        sweep = asyncio.create_task(registry.sweep())
        await settle()

        assert fast.sent == [{"type": 1, "data": {"text": "PONG"}}]
        assert slow.pong_waiters == []
        assert not sweep.done()

        gate.set()
        await sweep
        assert len(slow.pong_waiters) == 1

    asyncio.run(scenario())


def test_heartbeat_runs_periodically_until_shutdown():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book, heartbeat_interval_s=0.01)
        transport = FakeTransport(auto_pong=True)
        connection = await registry.accept(transport)

        registry.start()
        registry.start()
        await asyncio.sleep(0.05)
        assert len(transport.sent) >= 2
        assert all(frame["type"] == 1 for frame in transport.sent)

        await registry.shutdown()
        assert len(registry) == 0
        assert registry.pending_pongs == 0
        assert book.sessions[connection.id].disconnect_calls == 1

        pings = len(transport.pong_waiters)
        await asyncio.sleep(0.03)
        assert len(transport.pong_waiters) == pings

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Upstream terminal close
# ---------------------------------------------------------------------

def test_upstream_terminal_close_disposes_client():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        transport = FakeTransport()
        connection = await registry.accept(transport)
        await registry.sweep()

        await book.sessions[connection.id].listener.on_session_closed()
        await settle()

        assert connection.id not in registry
        assert registry.pending_pongs == 0
        assert transport.close_calls == [(1011, "upstream unavailable")]
        assert book.sessions[connection.id].disconnect_calls == 1

        # The relay's own close signal afterwards is a no-op
        await registry.on_close(connection.id, reason="client_disconnect")
        assert book.sessions[connection.id].disconnect_calls == 1

    asyncio.run(scenario())


def test_client_close_does_not_close_transport_again():
    async def scenario() -> None:
        book = SessionBook()
        registry = ConnectionRegistry(session_factory=book)
        transport = FakeTransport()
        connection = await registry.accept(transport)

        await registry.on_close(connection.id)
        await book.sessions[connection.id].listener.on_session_closed()

        assert transport.close_calls == []

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# End to end with a real upstream session
# ---------------------------------------------------------------------

class RealtimeHarness:
    def __init__(self, connector: FakeConnector | None = None) -> None:
        self.socket = FakeBackendSocket()
        self.connector = connector or FakeConnector(self.socket)
        self.sessions: list[RealtimeTranslationSession] = []
        self.registry = ConnectionRegistry(session_factory=self.factory)

    def factory(self, client_id: str, listener: Any) -> RealtimeTranslationSession:
        session = RealtimeTranslationSession(
            listener=listener,
            api_key="sk-test",
            model="gpt-realtime",
            target_language="English",
            client_id=client_id,
            connector=self.connector,
            sleep=RecordingSleep(),
        )
        self.sessions.append(session)
        return session


def test_audio_is_gated_on_backend_ready():
    async def scenario() -> None:
        h = RealtimeHarness()
        connection = await h.registry.accept(FakeTransport())
        await settle()

        await h.registry.on_message(connection.id, speech_frame("data:audio/webm;base64,Zm9v"))
        assert h.socket.appended_audio() == []

        h.socket.push({"type": "session.created"})
        await settle()
        await h.registry.on_message(connection.id, speech_frame("data:audio/webm;base64,Zm9v"))

        assert h.socket.appended_audio() == ["Zm9v"]

    asyncio.run(scenario())


def test_backend_text_reaches_client_as_one_envelope():
    async def scenario() -> None:
        h = RealtimeHarness()
        transport = FakeTransport()
        await h.registry.accept(transport)
        await settle()

        h.socket.push({"type": "session.updated"})
        h.socket.push({"type": "response.output_text.delta", "delta": "Bonjour"})
        await settle()

        assert transport.sent == [{"type": 0, "data": {"text": "Bonjour"}}]

    asyncio.run(scenario())


def test_client_close_stops_upstream_without_reconnect():
    async def scenario() -> None:
        h = RealtimeHarness()
        transport = FakeTransport()
        connection = await h.registry.accept(transport)
        await settle()
        h.socket.push({"type": "session.updated"})
        await settle()

        await h.registry.on_close(connection.id, reason="client_disconnect")
        await settle()

        session = h.sessions[0]
        assert session.intentional_close is True
        assert h.socket.closed is True
        assert len(h.connector.calls) == 1
        assert transport.close_calls == []

    asyncio.run(scenario())


def test_exhausted_upstream_closes_client_transport():
    async def scenario() -> None:
        h = RealtimeHarness(FakeConnector())  # backend refuses every connection
        transport = FakeTransport()
        connection = await h.registry.accept(transport)
        await settle(400)

        session = h.sessions[0]
        assert len(h.connector.calls) == 4
        assert session.state is UpstreamState.CLOSING
        assert connection.id not in h.registry
        assert transport.open is False
        assert transport.close_calls == [(1011, "upstream unavailable")]

        await h.registry.on_message(connection.id, speech_frame("AAA"))
        await h.registry.sweep()
        assert transport.pong_waiters == []

    asyncio.run(scenario())
