"""
Connection registry (gateway).

Responsibilities:
- Accept client transports and pair each with its own upstream session
- Route inbound client envelopes to the owning upstream session
- Tear down the pair exactly once when either side goes away
- Run the periodic liveness sweep (protocol ping -> PONG envelope)
- Shut every session down on process exit

NOT responsible for:
- Socket accept / receive loops (server/relay.py)
- Backend transport, reconnects, backoff (adapters/translation/realtime.py)
- Envelope parsing rules (protocol/envelope.py)

Every per-connection fault is contained here: nothing raised by one
client's transport or session escapes into another client's handling.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterator

from adapters.translation.base import TranslationSession, TranslationSessionListener
from constants import (
    CLOSE_UPSTREAM_UNAVAILABLE,
    CLOSE_UPSTREAM_UNAVAILABLE_REASON,
    HEARTBEAT_INTERVAL_S,
)
from observability.logger import log_event, preview
from protocol.envelope import (
    SpeechTranslationRequest,
    decode_envelope,
    encode_pong,
    extract_base64,
)
from session.client_connection import (
    ClientConnection,
    ClientRelayListener,
    ClientTransport,
    DeviceInfo,
    new_connection_id,
)


# (client_id, listener) -> unconnected session
SessionFactory = Callable[[str, TranslationSessionListener], TranslationSession]


class ConnectionRegistry:
    """
    One registry per process; one entry per live client connection.

    All methods run on the event loop. The mapping is only mutated by
    accept/register, on_close and shutdown; the sweep iterates a snapshot.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        heartbeat_interval_s: float = HEARTBEAT_INTERVAL_S,
    ) -> None:
        self._session_factory = session_factory
        self._heartbeat_interval_s = heartbeat_interval_s

        self._clients: dict[str, ClientConnection] = {}
        self._heartbeat_task: asyncio.Task[None] | None = None
        # connection_id -> task awaiting that client's outstanding pong
        self._pong_waiters: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._clients

    def get(self, connection_id: str) -> ClientConnection | None:
        return self._clients.get(connection_id)

    def connection_ids(self) -> Iterator[str]:
        return iter(tuple(self._clients))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the heartbeat task. Idempotent; requires a running loop."""
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            return
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(),
            name="registry-heartbeat",
        )

    async def shutdown(self) -> None:
        """Stop the heartbeat, disconnect every session, clear the registry."""
        task = self._heartbeat_task
        self._heartbeat_task = None
        waiters = list(self._pong_waiters.values())
        self._pong_waiters.clear()

        for t in ([task] if task is not None else []) + waiters:
            t.cancel()
        for t in ([task] if task is not None else []) + waiters:
            try:
                await t
            except asyncio.CancelledError:
                pass

        connections = list(self._clients.values())
        self._clients.clear()

        for connection in connections:
            await self._disconnect_session(connection, reason="registry_shutdown")

        log_event({
            "event_type": "REGISTRY_SHUTDOWN",
            "connections": len(connections),
        })

    # ------------------------------------------------------------------
    # Accept / register
    # ------------------------------------------------------------------

    async def accept(
        self,
        transport: ClientTransport,
        device_info: DeviceInfo | None = None,
    ) -> ClientConnection:
        """
        Build and register the ClientConnection + upstream session pair.

        The session's listener is bound to this transport only. connect()
        is called before returning; it does not wait for the backend.
        """
        connection = ClientConnection(
            id=new_connection_id(),
            transport=transport,
            device_info=device_info or DeviceInfo(),
        )

        listener = ClientRelayListener(
            client_id=connection.id,
            transport=transport,
            on_closed=self._on_upstream_closed,
        )
        session = self._session_factory(connection.id, listener)
        connection.attach_upstream_session(session)

        self.register(connection)
        session.connect()

        log_event({"event_type": "CLIENT_CONNECTED", **connection.log_context()})
        return connection

    def register(self, connection: ClientConnection) -> bool:
        """
        Add a connection. Registering an existing identity is a no-op.

        Returns True if the connection was added.
        """
        if connection.id in self._clients:
            log_event({
                "event_type": "CLIENT_REGISTER_DUPLICATE",
                "client_id": connection.id,
            })
            return False
        self._clients[connection.id] = connection
        return True

    # ------------------------------------------------------------------
    # Inbound routing
    # ------------------------------------------------------------------

    async def on_message(self, connection_id: str, payload: str | bytes) -> None:
        """
        Route one inbound client frame.

        Binary, undecodable and unsupported frames are dropped; the
        connection stays open.
        """
        connection = self._clients.get(connection_id)
        if connection is None:
            log_event({
                "event_type": "MESSAGE_WITHOUT_CONNECTION",
                "client_id": connection_id,
            })
            return

        envelope = decode_envelope(payload)
        if envelope is None:
            log_event({
                "event_type": "ENVELOPE_DECODE_FAILED",
                "client_id": connection_id,
                "binary": isinstance(payload, bytes),
                "payload_preview": preview(payload),
            })
            return

        if isinstance(envelope, SpeechTranslationRequest):
            if not connection.transport.is_open or connection.upstream_session is None:
                return
            await connection.upstream_session.append_audio(
                extract_base64(envelope.audio_base64)
            )

    async def on_close(self, connection_id: str, reason: str | None = None) -> None:
        """
        Client transport closed or errored.

        Unregisters first, so concurrent close/error signals tear the pair
        down exactly once.
        """
        connection = self._clients.pop(connection_id, None)
        if connection is None:
            return

        waiter = self._pong_waiters.pop(connection_id, None)
        if waiter is not None:
            waiter.cancel()

        log_event({
            "event_type": "CLIENT_DISCONNECTED",
            "client_id": connection_id,
            "reason": reason,
        })
        await self._disconnect_session(connection, reason=reason)

    async def _on_upstream_closed(self, connection_id: str) -> None:
        """
        Upstream session reached its terminal state.

        Still registered means nobody asked for it (retry budget exhausted):
        drop the pair and close the client so it reconnects its own transport.
        After an intentional disconnect the entry is already gone.
        """
        connection = self._clients.get(connection_id)
        if connection is None:
            return

        log_event({
            "event_type": "UPSTREAM_TERMINAL",
            "client_id": connection_id,
        })
        await self.on_close(connection_id, reason="upstream_closed")

        try:
            await connection.transport.close(
                CLOSE_UPSTREAM_UNAVAILABLE,
                CLOSE_UPSTREAM_UNAVAILABLE_REASON,
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CLIENT_CLOSE_FAILED",
                "client_id": connection_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    async def _disconnect_session(
        self,
        connection: ClientConnection,
        *,
        reason: str | None,
    ) -> None:
        session = connection.upstream_session
        if session is None:
            return
        try:
            await session.disconnect()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "SESSION_DISCONNECT_FAILED",
                "client_id": connection.id,
                "reason": reason,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval_s)
            await self.sweep()

    @property
    def pending_pongs(self) -> int:
        """Pings sent and not yet answered."""
        return len(self._pong_waiters)

    async def sweep(self) -> None:
        """
        Ping every registered, open client transport once, concurrently.

        A client whose previous ping is still unanswered is skipped.
        """
        targets = [
            connection for connection in list(self._clients.values())
            if connection.transport.is_open and connection.id not in self._pong_waiters
        ]
        await asyncio.gather(*(self._ping(connection) for connection in targets))

    async def _ping(self, connection: ClientConnection) -> None:
        try:
            pong_waiter = await connection.transport.ping()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CLIENT_PING_FAILED",
                "client_id": connection.id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return

        # Closed, or an overlapping sweep got there first
        if connection.id not in self._clients or connection.id in self._pong_waiters:
            return
        self._track_pong(connection.id, pong_waiter)

    def _track_pong(self, connection_id: str, pong_waiter: Awaitable[Any]) -> None:
        task = asyncio.create_task(self._await_pong(connection_id, pong_waiter))
        self._pong_waiters[connection_id] = task

        def _release(done: asyncio.Task[None]) -> None:
            if self._pong_waiters.get(connection_id) is done:
                del self._pong_waiters[connection_id]

        task.add_done_callback(_release)

    async def _await_pong(self, connection_id: str, pong_waiter: Awaitable[Any]) -> None:
        try:
            await pong_waiter
        except Exception:  # pylint: disable=broad-exception-caught
            # Connection closed before the pong arrived; on_close handles teardown
            return
        await self.on_pong(connection_id)

    async def on_pong(self, connection_id: str) -> None:
        """Answer a transport pong with an application-level PONG envelope."""
        connection = self._clients.get(connection_id)
        if connection is None or not connection.transport.is_open:
            return
        try:
            await connection.transport.send_text(encode_pong())
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CLIENT_SEND_FAILED",
                "client_id": connection_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
