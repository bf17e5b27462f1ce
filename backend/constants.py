"""
RELAY CONSTANTS
---------------
Single source of truth for all behavioral numbers in the relay.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- Deployment-specific values (keys, hosts, ports) live in config.py instead.
- Other modules import from this file; no magic numbers elsewhere.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Client liveness
# =============================================================================

HEARTBEAT_INTERVAL_S: Final[float] = 10.0
PONG_TEXT: Final[str] = "PONG"

# RFC 6455 internal error; sent when the upstream session turned terminal
CLOSE_UPSTREAM_UNAVAILABLE: Final[int] = 1011
CLOSE_UPSTREAM_UNAVAILABLE_REASON: Final[str] = "upstream unavailable"

# =============================================================================
# Upstream reconnect policy
# =============================================================================

MAX_RECONNECT_ATTEMPTS: Final[int] = 3
RECONNECT_BASE_DELAY_MS: Final[int] = 1_000
RECONNECT_MAX_DELAY_MS: Final[int] = 8_000

# =============================================================================
# Client envelopes
# =============================================================================

BASE64_MARKER: Final[str] = ";base64,"
DATA_URI_PREFIX: Final[str] = "data:"

# =============================================================================
# Realtime backend session configuration
# =============================================================================

REALTIME_SESSION_TYPE: Final[str] = "realtime"
REALTIME_OUTPUT_MODALITIES: Final[tuple[str, ...]] = ("text",)
REALTIME_NOISE_REDUCTION: Final[str] = "near_field"
REALTIME_INPUT_FORMAT: Final[str] = "audio/pcm"
REALTIME_INPUT_RATE_HZ: Final[int] = 24_000
REALTIME_TRANSCRIPTION_MODEL: Final[str] = "gpt-4o-transcribe"

REALTIME_VAD_TYPE: Final[str] = "server_vad"
REALTIME_VAD_THRESHOLD: Final[float] = 0.3
REALTIME_VAD_PREFIX_PADDING_MS: Final[int] = 500
REALTIME_VAD_SILENCE_DURATION_MS: Final[int] = 200

# Realtime frames carry base64 audio; leave headroom above the 1 MiB default
REALTIME_MAX_MESSAGE_BYTES: Final[int] = 2**22

# =============================================================================
# One-shot translation
# =============================================================================

ONESHOT_DEFAULT_CONTAINER: Final[str] = "webm"
ONESHOT_PROMPT: Final[str] = (
    "You are a live translator. Whatever audio you hear, immediately output "
    "the translated text in English only. Do not add commentary."
)
