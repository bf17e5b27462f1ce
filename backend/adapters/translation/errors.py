"""
Translation error taxonomy.

UpstreamSessionError subclasses are delivered through
TranslationSessionListener.on_error; they are reports, not raised into
the registry.
"""

from __future__ import annotations


class TranslationError(Exception):
    """Base class for translation adapter errors."""


class UpstreamSessionError(TranslationError):
    """Base class for errors reported by a realtime upstream session."""


class BackendError(UpstreamSessionError):
    """
    Explicit `error` event sent by the realtime backend.

    Non-fatal: the session keeps running unless the transport also closes.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class UpstreamTransportError(UpstreamSessionError):
    """The backend WebSocket failed to open or dropped with an error."""


class MaxReconnectAttemptsReached(UpstreamSessionError):
    """Reconnect budget exhausted; the session is terminal."""

    def __init__(self, attempts: int) -> None:
        super().__init__("Max reconnection attempts reached")
        self.attempts = attempts


class OneShotTranslationError(TranslationError):
    """A one-shot translation request could not be completed."""


class InvalidAudioPayload(OneShotTranslationError):
    """The submitted audio is empty or not valid base64."""
