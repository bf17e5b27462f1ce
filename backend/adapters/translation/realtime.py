"""
Realtime translation session over the OpenAI Realtime WebSocket API.

Core model:
- One session == one client == at most one live backend WebSocket.
- The session configures the backend (session.update) once per successful
  open, then waits for session.created / session.updated before forwarding
  any audio.
- Audio arriving outside READY is dropped, never queued: after a gap, stale
  audio has no translation value.
- Unexpected transport loss triggers a reconnect with capped exponential
  backoff. disconnect() is the only way to stop a session on purpose.

Task layout:
- _run_task: opens the transport, sends session.update, consumes events.
- _reconnect_task: sleeps the backoff delay, then calls connect() again.
At most one of them is active at a time; the run task has fully closed its
socket before it schedules a reconnect.

Design constraints:
- The session must not know about client sockets or envelopes.
- Every listener call is awaited in backend order; a failing listener is
  logged and never kills the receive loop.
"""

from __future__ import annotations

import asyncio
import json
import urllib.parse
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from adapters.translation.base import (
    TranslationSession,
    TranslationSessionListener,
    UpstreamState,
)
from adapters.translation.errors import (
    BackendError,
    MaxReconnectAttemptsReached,
    UpstreamTransportError,
)
from adapters.translation.retry import (
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from constants import (
    MAX_RECONNECT_ATTEMPTS,
    REALTIME_INPUT_FORMAT,
    REALTIME_INPUT_RATE_HZ,
    REALTIME_MAX_MESSAGE_BYTES,
    REALTIME_NOISE_REDUCTION,
    REALTIME_OUTPUT_MODALITIES,
    REALTIME_SESSION_TYPE,
    REALTIME_TRANSCRIPTION_MODEL,
    REALTIME_VAD_PREFIX_PADDING_MS,
    REALTIME_VAD_SILENCE_DURATION_MS,
    REALTIME_VAD_THRESHOLD,
    REALTIME_VAD_TYPE,
)
from observability.logger import log_event
from observability.metrics import timed


Connector = Callable[..., Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[None]]

DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime"

_READY_EVENTS = frozenset({"session.created", "session.updated"})

# Logged only; they never change session state
_INFORMATIONAL_EVENTS = frozenset({
    "conversation.item.input_audio_transcription.delta",
    "conversation.item.input_audio_transcription.completed",
    "input_audio_buffer.speech_started",
    "input_audio_buffer.speech_stopped",
})


def build_instructions(target_language: str) -> str:
    """System instructions that keep the model a pure translator."""
    return "\n".join([
        "You are a real-time speech translator.",
        f"Your ONLY job is to translate the user's spoken words into {target_language}.",
        "Rules:",
        "- Output ONLY the translated text. No explanations, no commentary, no greetings.",
        "- Preserve the original meaning, tone, and intent as closely as possible.",
        '- If you cannot understand or translate a segment, output "[inaudible]".',
        "- Do NOT respond conversationally. Do NOT add anything beyond the translation.",
        "- Translate naturally and idiomatically, not word-for-word.",
        "- If the speaker pauses mid-sentence, translate what you have so far.",
    ])


def build_session_update(target_language: str) -> dict[str, Any]:
    """The session.update event sent once per successful transport open."""
    return {
        "type": "session.update",
        "session": {
            "type": REALTIME_SESSION_TYPE,
            "output_modalities": list(REALTIME_OUTPUT_MODALITIES),
            "instructions": build_instructions(target_language),
            "audio": {
                "input": {
                    "noise_reduction": {"type": REALTIME_NOISE_REDUCTION},
                    "format": {
                        "type": REALTIME_INPUT_FORMAT,
                        "rate": REALTIME_INPUT_RATE_HZ,
                    },
                    "transcription": {"model": REALTIME_TRANSCRIPTION_MODEL},
                    "turn_detection": {
                        "type": REALTIME_VAD_TYPE,
                        "threshold": REALTIME_VAD_THRESHOLD,
                        "prefix_padding_ms": REALTIME_VAD_PREFIX_PADDING_MS,
                        "silence_duration_ms": REALTIME_VAD_SILENCE_DURATION_MS,
                    },
                },
            },
        },
    }


class RealtimeTranslationSession(TranslationSession):
    """
    Upstream session for one client.

    Public interface:
    - connect(): schedule the (re)connection; returns immediately
    - append_audio(audio_base64): forward one chunk while READY, else drop
    - disconnect(): intentional, idempotent shutdown; cancels pending reconnects

    `connector` and `sleep` are injectable so tests can drive the state
    machine with a fake backend and without real timers.
    """

    def __init__(
        self,
        *,
        listener: TranslationSessionListener,
        api_key: str,
        model: str,
        target_language: str,
        client_id: str,
        url: str = DEFAULT_REALTIME_URL,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        connector: Connector = ws_connect,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._listener = listener
        self._api_key = api_key
        self._model = model
        self._target_language = target_language
        self._client_id = client_id
        self._url = url
        self._max_reconnect_attempts = max_reconnect_attempts
        self._connector = connector
        self._sleep = sleep

        self._state = UpstreamState.DISCONNECTED
        self._ws: Any = None
        self._run_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        self._intentional_close = False
        self._closed_notified = False
        self._attempts = reset_attempt()
        self._dropped_chunks = 0

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> UpstreamState:
        return self._state

    @property
    def target_language(self) -> str:
        return self._target_language

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts.attempt

    @property
    def intentional_close(self) -> bool:
        return self._intentional_close

    @property
    def is_ready(self) -> bool:
        return self._state is UpstreamState.READY

    @property
    def dropped_chunks(self) -> int:
        """Audio chunks dropped because the session was not READY."""
        return self._dropped_chunks

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def connect(self) -> None:
        """
        Start a connection attempt on a background task.

        No-op once the session is terminal, or while an attempt is running.
        """
        if self._intentional_close or self._closed_notified:
            log_event({
                "event_type": "UPSTREAM_CONNECT_IGNORED",
                "client_id": self._client_id,
                "state": self._state.value,
            })
            return

        if self._run_task is not None and not self._run_task.done():
            return

        self._state = UpstreamState.CONNECTING
        self._run_task = asyncio.create_task(
            self._run(),
            name=f"upstream-{self._client_id}",
        )

    async def append_audio(self, audio_base64: str) -> None:
        """
        Forward one base64 audio chunk as one input_audio_buffer.append.

        Dropped silently unless READY. A failed send drops the chunk; the
        receive loop observes the close and drives the reconnect.
        """
        ws = self._ws
        if self._state is not UpstreamState.READY or ws is None:
            self._dropped_chunks += 1
            return

        try:
            await ws.send(json.dumps({
                "type": "input_audio_buffer.append",
                "audio": audio_base64,
            }))
        except ConnectionClosed as e:
            self._dropped_chunks += 1
            log_event({
                "event_type": "UPSTREAM_APPEND_FAILED",
                "client_id": self._client_id,
                "error": repr(e),
            })

    async def disconnect(self) -> None:
        """
        Intentional shutdown.

        Idempotent. Prevents any further reconnect, including one already
        waiting on its backoff delay, and fires on_session_closed once.
        """
        if self._intentional_close:
            return
        self._intentional_close = True
        self._state = UpstreamState.CLOSING

        log_event({
            "event_type": "UPSTREAM_DISCONNECT",
            "client_id": self._client_id,
        })

        current = asyncio.current_task()
        tasks = [
            t for t in (self._reconnect_task, self._run_task)
            if t is not None and t is not current and not t.done()
        ]
        self._reconnect_task = None

        ws = self._ws
        self._ws = None
        if ws is not None:
            await self._close_quietly(ws)

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._finish()

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def _build_url(self) -> str:
        qs = urllib.parse.urlencode({"model": self._model})
        return f"{self._url}?{qs}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "UPSTREAM_CLOSE_FAILED",
                "client_id": self._client_id,
                "error": repr(e),
            })

    async def _run(self) -> None:
        """One connection lifetime: open, configure, consume, hand off."""
        try:
            with timed("upstream_connect", client_id=self._client_id):
                ws = await self._connector(
                    self._build_url(),
                    additional_headers=self._headers(),
                    max_size=REALTIME_MAX_MESSAGE_BYTES,
                )
        except Exception as e:  # pylint: disable=broad-exception-caught
            await self._on_transport_closed(
                UpstreamTransportError(f"upstream connect failed: {e!r}")
            )
            return

        if self._intentional_close:
            await self._close_quietly(ws)
            return

        self._ws = ws
        self._state = UpstreamState.AWAITING_READY
        log_event({
            "event_type": "UPSTREAM_OPEN",
            "client_id": self._client_id,
            "reconnect_attempts": self._attempts.attempt,
        })

        error: Exception | None = None
        try:
            await ws.send(json.dumps(build_session_update(self._target_language)))
            async for raw in ws:
                await self._handle_message(raw)
        except ConnectionClosed as e:
            error = UpstreamTransportError(f"upstream connection lost: {e!r}")
        except OSError as e:
            error = UpstreamTransportError(f"upstream socket error: {e!r}")
        finally:
            if self._ws is ws:
                self._ws = None
            await self._close_quietly(ws)

        await self._on_transport_closed(error)

    async def _on_transport_closed(self, error: Exception | None) -> None:
        log_event({
            "event_type": "UPSTREAM_CLOSED",
            "client_id": self._client_id,
            "intentional": self._intentional_close,
            "error": repr(error) if error is not None else None,
        })

        if self._intentional_close:
            await self._finish()
            return

        if error is not None:
            await self._notify("on_error", self._listener.on_error(error))

        await self._schedule_reconnect()

    async def _schedule_reconnect(self) -> None:
        if not should_retry(self._attempts, max_attempts=self._max_reconnect_attempts):
            self._state = UpstreamState.CLOSING
            log_event({
                "event_type": "UPSTREAM_MAX_RECONNECT_ATTEMPTS",
                "client_id": self._client_id,
                "attempts": self._attempts.attempt,
            })
            await self._notify(
                "on_error",
                self._listener.on_error(MaxReconnectAttemptsReached(self._attempts.attempt)),
            )
            await self._finish()
            return

        delay_ms = get_retry_delay_ms(self._attempts)
        self._attempts = next_attempt(self._attempts)
        self._state = UpstreamState.CONNECTING

        log_event({
            "event_type": "UPSTREAM_RECONNECT_SCHEDULED",
            "client_id": self._client_id,
            "attempt": self._attempts.attempt,
            "delay_ms": delay_ms,
        })

        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay_ms),
            name=f"upstream-reconnect-{self._client_id}",
        )

    async def _reconnect_after(self, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000)
        self._reconnect_task = None
        if self._intentional_close:
            return
        self.connect()

    async def _finish(self) -> None:
        self._state = UpstreamState.CLOSING
        if self._closed_notified:
            return
        self._closed_notified = True
        await self._notify("on_session_closed", self._listener.on_session_closed())

    # -------------------------------------------------------------------------
    # Backend events
    # -------------------------------------------------------------------------

    async def _notify(self, name: str, call: Awaitable[None]) -> None:
        try:
            await call
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "UPSTREAM_LISTENER_FAILED",
                "client_id": self._client_id,
                "callback": name,
                "error": repr(e),
            })

    async def _handle_message(self, raw: str | bytes) -> None:
        try:
            event = json.loads(raw)
        except ValueError as e:
            log_event({
                "event_type": "UPSTREAM_MESSAGE_DECODE_FAILED",
                "client_id": self._client_id,
                "error": str(e),
            })
            return

        if not isinstance(event, dict):
            log_event({
                "event_type": "UPSTREAM_MESSAGE_DECODE_FAILED",
                "client_id": self._client_id,
                "error": "event is not an object",
            })
            return

        event_type = event.get("type")

        if event_type in _READY_EVENTS:
            if self._state is UpstreamState.AWAITING_READY:
                self._state = UpstreamState.READY
                self._attempts = reset_attempt()
                log_event({
                    "event_type": "UPSTREAM_READY",
                    "client_id": self._client_id,
                    "trigger": event_type,
                    "dropped_chunks": self._dropped_chunks,
                })
                await self._notify("on_session_ready", self._listener.on_session_ready())
            return

        if event_type == "response.text.delta":
            delta = event.get("delta")
            if isinstance(delta, str):
                await self._notify("on_text_delta", self._listener.on_text_delta(delta))
            return

        if event_type == "response.output_text.delta":
            delta = event.get("delta")
            if isinstance(delta, str):
                await self._notify("on_text_done", self._listener.on_text_done(delta))
            return

        if event_type == "error":
            detail = event.get("error")
            if not isinstance(detail, dict):
                detail = {}
            message = detail.get("message") or "Unknown realtime backend error"
            log_event({
                "event_type": "UPSTREAM_BACKEND_ERROR",
                "client_id": self._client_id,
                "code": detail.get("code"),
                "message": message,
            })
            await self._notify(
                "on_error",
                self._listener.on_error(BackendError(str(message), code=detail.get("code"))),
            )
            return

        if event_type in _INFORMATIONAL_EVENTS:
            log_event({
                "event_type": "UPSTREAM_EVENT",
                "client_id": self._client_id,
                "upstream_type": event_type,
            })
            return

        log_event({
            "event_type": "UPSTREAM_EVENT_UNHANDLED",
            "client_id": self._client_id,
            "upstream_type": event_type,
        })
