"""
JSON envelope codec for the client <-> gateway channel.

Client -> Server (text frames only):
    {"type": 0, "data": {"metadata": {"startTime": 0, "endTime": 250},
                         "audioBase64": "data:audio/webm;base64,...."}}

Server -> Client:
    {"type": 0, "data": {"text": "Bonjour"}}     translated text
    {"type": 1, "data": {"text": "PONG"}}        liveness ack

The `type` tag is the integer MessageType value on the wire. Decoding also
accepts the member name ("SPEECH_TRANSLATION") so hand-written clients work.

Binary frames are never decoded. Every decode failure is reported as None;
callers drop the message and keep the connection alive.

Usage example:

    envelope = decode_envelope(frame)
    if envelope is None:
        return
    if isinstance(envelope, SpeechTranslationRequest):
        await session.append_audio(extract_base64(envelope.audio_base64))

    await socket.send(encode_speech_translation("Bonjour"))
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from constants import BASE64_MARKER, DATA_URI_PREFIX, PONG_TEXT


class MessageType(IntEnum):
    """Envelope discriminator."""

    SPEECH_TRANSLATION = 0
    PONG = 1


@dataclass(frozen=True)
class AudioMetadata:
    """Client-side capture window of one chunk, in client clock units."""
    start_time: float | None = None
    end_time: float | None = None


@dataclass(frozen=True)
class SpeechTranslationRequest:
    """One inbound audio chunk. `audio_base64` is as received (may be a data-URI)."""
    audio_base64: str
    metadata: AudioMetadata = AudioMetadata()

    @property
    def message_type(self) -> MessageType:
        return MessageType.SPEECH_TRANSLATION


InboundEnvelope = SpeechTranslationRequest


# -------------------------
# Base64 helpers
# -------------------------

def extract_base64(value: str) -> str:
    """
    Strip a data-URI prefix, leaving raw base64.

    extract_base64("data:audio/webm;base64,AAA") == "AAA"
    extract_base64("AAA") == "AAA"
    """
    if BASE64_MARKER in value:
        return value.split(BASE64_MARKER, 1)[1]
    return value


def parse_data_uri(value: str) -> tuple[str | None, str]:
    """
    Split a payload into (mime, raw base64).

    mime is None when the payload carries no data-URI prefix or the prefix
    does not name one.
    """
    if BASE64_MARKER not in value:
        return None, value

    head, payload = value.split(BASE64_MARKER, 1)
    if head.startswith(DATA_URI_PREFIX):
        head = head[len(DATA_URI_PREFIX):]
    return (head or None), payload


# -------------------------
# Decode
# -------------------------

def _parse_type(raw: Any) -> MessageType | None:
    # bool is an int subclass; True must not alias PONG
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        try:
            return MessageType(raw)
        except ValueError:
            return None
    if isinstance(raw, str):
        return MessageType.__members__.get(raw)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_metadata(raw: Any) -> AudioMetadata | None:
    if raw is None:
        return AudioMetadata()
    if not isinstance(raw, dict):
        return None

    start = raw.get("startTime")
    end = raw.get("endTime")
    for value in (start, end):
        if value is not None and not _is_number(value):
            return None

    return AudioMetadata(start_time=start, end_time=end)


def _parse_speech_translation(data: Any) -> SpeechTranslationRequest | None:
    if not isinstance(data, dict):
        return None

    audio = data.get("audioBase64", data.get("audioChunk"))
    if not isinstance(audio, str):
        return None

    metadata = _parse_metadata(data.get("metadata"))
    if metadata is None:
        return None

    return SpeechTranslationRequest(audio_base64=audio, metadata=metadata)


def decode_envelope(payload: str | bytes) -> InboundEnvelope | None:
    """
    Decode one inbound client frame.

    Returns None for binary frames, malformed JSON, unknown tags, outbound-only
    tags and invalid payload shapes. Never raises.
    """
    if not isinstance(payload, str):
        return None

    try:
        raw = json.loads(payload)
    except ValueError:
        return None

    if not isinstance(raw, dict):
        return None

    message_type = _parse_type(raw.get("type"))

    if message_type is MessageType.SPEECH_TRANSLATION:
        return _parse_speech_translation(raw.get("data"))

    # PONG is outbound only
    return None


# -------------------------
# Encode
# -------------------------

def _encode(message_type: MessageType, data: dict[str, Any]) -> str:
    return json.dumps(
        {"type": int(message_type), "data": data},
        ensure_ascii=False,
        separators=(",", ":"),
    )


def encode_speech_translation(text: str) -> str:
    """Outbound translated-text envelope."""
    return _encode(MessageType.SPEECH_TRANSLATION, {"text": text})


def encode_pong() -> str:
    """Outbound application-level liveness ack."""
    return _encode(MessageType.PONG, {"text": PONG_TEXT})
