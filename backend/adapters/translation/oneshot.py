"""
One-shot (non-streaming) audio translation.

Takes a complete recording and returns one finished English translation via
the OpenAI audio translations endpoint. Not part of the realtime relay path.

This module is deliberately "dumb":
- No retries, no caching, no chunking
- The caller owns the AsyncOpenAI client (one per process)
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from adapters.translation.errors import InvalidAudioPayload, OneShotTranslationError
from constants import ONESHOT_DEFAULT_CONTAINER, ONESHOT_PROMPT
from observability.logger import log_event
from observability.metrics import timed
from protocol.envelope import parse_data_uri


def container_from_mime(mime: str | None) -> str | None:
    """
    "audio/webm" -> "webm", "audio/ogg;codecs=opus" -> "ogg".

    Returns None when the mime does not name a subtype.
    """
    if not mime or "/" not in mime:
        return None
    subtype = mime.split("/", 1)[1].split(";", 1)[0].strip().lower()
    return subtype or None


class OneShotTranslator:
    """Translate a full audio payload (raw base64 or data-URI) to English text."""

    def __init__(self, *, client: Any, model: str = "whisper-1") -> None:
        """
        Args:
            client: openai.AsyncOpenAI (or anything exposing audio.translations.create)
            model: translation model identifier
        """
        self._client = client
        self._model = model

    async def translate(self, audio_base64: str, container: str | None = None) -> str:
        """
        Returns the translated text.

        The upload's file extension comes from the explicit `container` hint,
        else the data-URI mime subtype, else "webm".

        Raises:
            InvalidAudioPayload on empty or undecodable audio.
            OneShotTranslationError on provider failure.
        """
        mime, payload = parse_data_uri(audio_base64)

        try:
            audio_bytes = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidAudioPayload(f"audio is not valid base64: {e}") from e

        if not audio_bytes:
            raise InvalidAudioPayload("audio payload is empty")

        extension = container or container_from_mime(mime) or ONESHOT_DEFAULT_CONTAINER
        filename = f"audio.{extension}"

        try:
            with timed("oneshot_translation", details={"bytes": len(audio_bytes)}):
                result = await self._client.audio.translations.create(
                    file=(filename, audio_bytes),
                    model=self._model,
                    prompt=ONESHOT_PROMPT,
                    response_format="json",
                )
        except Exception as e:
            log_event({
                "event_type": "ONESHOT_TRANSLATION_FAILED",
                "exception": type(e).__name__,
                "message": str(e),
            })
            raise OneShotTranslationError(f"translation request failed: {e}") from e

        return result.text
