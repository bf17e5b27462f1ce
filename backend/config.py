"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No relay logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import HEARTBEAT_INTERVAL_S, MAX_RECONNECT_ATTEMPTS


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the app factory, registry and upstream sessions.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # OpenAI
    # ------------------------------------------------------------------

    openai_api_key: str | None = None
    openai_realtime_model: str = "gpt-realtime"
    openai_realtime_url: str = "wss://api.openai.com/v1/realtime"
    oneshot_model: str = "whisper-1"

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    target_language: str = "English"

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    http_host: str = "0.0.0.0"
    http_port: int = 8000
    relay_host: str = "0.0.0.0"
    relay_port: int = 8080
    relay_path: str = "/ws"

    # ------------------------------------------------------------------
    # Relay lifecycle
    # ------------------------------------------------------------------

    heartbeat_interval_s: float = HEARTBEAT_INTERVAL_S
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            openai_api_key=(
                os.environ.get("OPENAI_KEY") or os.environ.get("OPENAI_API_KEY")
            ),
            openai_realtime_model=os.environ.get("OPENAI_REALTIME_MODEL", "gpt-realtime"),
            openai_realtime_url=os.environ.get(
                "OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime"
            ),
            oneshot_model=os.environ.get("OPENAI_ONESHOT_MODEL", "whisper-1"),

            target_language=os.environ.get("TARGET_LANGUAGE", "English"),

            http_host=os.environ.get("HTTP_HOST", "0.0.0.0"),
            http_port=int(os.environ.get("HTTP_PORT", "8000")),
            relay_host=os.environ.get("RELAY_HOST", "0.0.0.0"),
            relay_port=int(os.environ.get("RELAY_PORT", "8080")),
            relay_path=os.environ.get("RELAY_PATH", "/ws"),

            heartbeat_interval_s=float(
                os.environ.get("HEARTBEAT_INTERVAL_S", str(HEARTBEAT_INTERVAL_S))
            ),
            max_reconnect_attempts=int(
                os.environ.get("MAX_RECONNECT_ATTEMPTS", str(MAX_RECONNECT_ATTEMPTS))
            ),
        )
