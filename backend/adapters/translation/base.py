"""
Realtime translation session contract.

This module defines the *interfaces only*: the session lifecycle states, the
listener an owner implements to receive session output, and the surface the
registry drives. No transport, retry or logging logic lives here.

Key invariants:
- A session reports to exactly one listener, fixed at construction.
- Listener methods are awaited in the order the backend produced the events.
- on_session_closed fires at most once per session.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum


class UpstreamState(str, Enum):
    """
    Lifecycle of one upstream backend session.

    CLOSING is terminal: once entered, no further transitions happen.
    """

    DISCONNECTED = "DISCONNECTED"      # Constructed, connect() not called yet
    CONNECTING = "CONNECTING"          # Opening transport (first time or reconnect)
    AWAITING_READY = "AWAITING_READY"  # Transport open, session.update sent
    READY = "READY"                    # Backend acknowledged the session; audio flows
    CLOSING = "CLOSING"                # Intentional close or retries exhausted


class TranslationSessionListener(ABC):
    """
    Receives output from a realtime translation session.

    Implementations must not block; they run on the session's receive task.
    """

    @abstractmethod
    async def on_text_delta(self, text: str) -> None:
        """Incremental translated text fragment."""
        raise NotImplementedError

    @abstractmethod
    async def on_text_done(self, text: str) -> None:
        """Output-text event from the backend, forwarded at the granularity received."""
        raise NotImplementedError

    @abstractmethod
    async def on_session_ready(self) -> None:
        """The session entered READY; audio is now forwarded."""
        raise NotImplementedError

    @abstractmethod
    async def on_session_closed(self) -> None:
        """The session reached its terminal state."""
        raise NotImplementedError

    @abstractmethod
    async def on_error(self, error: Exception) -> None:
        """A backend error, transport fault or exhausted retry budget."""
        raise NotImplementedError


class TranslationSession(ABC):
    """
    Surface of a realtime upstream session as seen by its owner.

    Implementations:
    - connect() schedules the connection and returns immediately
    - append_audio() never raises and drops audio outside READY
    - disconnect() is idempotent and cancels any pending reconnect
    """

    @property
    @abstractmethod
    def state(self) -> UpstreamState:
        raise NotImplementedError

    @abstractmethod
    def connect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def append_audio(self, audio_base64: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def disconnect(self) -> None:
        raise NotImplementedError
