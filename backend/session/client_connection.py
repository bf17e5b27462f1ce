"""
Client connection container.

- Owns one client transport and the upstream session paired with it
- Owned and mutated by ConnectionRegistry
- NOT a state machine; contains no routing logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol
from uuid import uuid4

from adapters.translation.base import TranslationSession, TranslationSessionListener
from observability.logger import log_event
from protocol.envelope import encode_speech_translation


def new_connection_id() -> str:
    return f"client_{uuid4().hex[:12]}"


# ---------------------------------------------------------------------
# Transport contract
# ---------------------------------------------------------------------


class ClientTransport(Protocol):
    """What the registry needs from an accepted client socket."""

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, text: str) -> None: ...

    async def ping(self) -> Awaitable[Any]:
        """Send a protocol-level ping; the returned awaitable resolves on pong."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@dataclass(frozen=True)
class DeviceInfo:
    """Immutable metadata captured at accept time."""
    user_agent: str = ""


# ---------------------------------------------------------------------
# ClientConnection
# ---------------------------------------------------------------------


@dataclass
class ClientConnection:
    """One accepted client and its exclusively owned upstream session."""

    id: str
    transport: ClientTransport
    device_info: DeviceInfo
    upstream_session: TranslationSession | None = None
    created_at: float = field(default_factory=time.time)

    def attach_upstream_session(self, session: TranslationSession) -> None:
        """Called once by the registry right after construction."""
        self.upstream_session = session

    def log_context(self) -> dict[str, Any]:
        return {
            "client_id": self.id,
            "user_agent": self.device_info.user_agent,
            "upstream_state": (
                self.upstream_session.state.value
                if self.upstream_session is not None else None
            ),
        }


# ---------------------------------------------------------------------
# Per-connection listener
# ---------------------------------------------------------------------


class ClientRelayListener(TranslationSessionListener):
    """
    Relays one upstream session's output to the one transport that owns it.

    Bound to a single transport at construction, so text can never reach
    another client.
    """

    def __init__(
        self,
        *,
        client_id: str,
        transport: ClientTransport,
        on_closed: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        """
        Args:
            on_closed: awaited with client_id when the session turns terminal
        """
        self._client_id = client_id
        self._transport = transport
        self._on_closed = on_closed

    async def _send_text(self, text: str) -> None:
        if not self._transport.is_open:
            log_event({
                "event_type": "CLIENT_TEXT_DROPPED",
                "client_id": self._client_id,
                "reason": "transport_closed",
            })
            return
        try:
            await self._transport.send_text(encode_speech_translation(text))
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CLIENT_SEND_FAILED",
                "client_id": self._client_id,
                "exception": type(e).__name__,
                "message": str(e),
            })

    async def on_text_delta(self, text: str) -> None:
        await self._send_text(text)

    async def on_text_done(self, text: str) -> None:
        await self._send_text(text)

    async def on_session_ready(self) -> None:
        log_event({"event_type": "SESSION_READY", "client_id": self._client_id})

    async def on_session_closed(self) -> None:
        log_event({"event_type": "SESSION_CLOSED", "client_id": self._client_id})
        if self._on_closed is not None:
            await self._on_closed(self._client_id)

    async def on_error(self, error: Exception) -> None:
        log_event({
            "event_type": "SESSION_ERROR",
            "client_id": self._client_id,
            "exception": type(error).__name__,
            "message": str(error),
        })
