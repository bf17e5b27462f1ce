"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (OpenAI client, connection registry)
- Start/stop the WebSocket relay listener with the app lifespan
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from adapters.translation.base import TranslationSession, TranslationSessionListener
from adapters.translation.oneshot import OneShotTranslator
from adapters.translation.realtime import RealtimeTranslationSession
from config import AppConfig
from observability.logger import log_event
from server.relay import start_relay_server
from server.routes import register_routes
from session.registry import ConnectionRegistry, SessionFactory


def build_session_factory(config: AppConfig) -> SessionFactory:
    """Upstream sessions for the registry, configured from AppConfig."""
    api_key = config.openai_api_key
    if not api_key:
        raise RuntimeError("OPENAI_KEY environment variable not set")

    def factory(client_id: str, listener: TranslationSessionListener) -> TranslationSession:
        return RealtimeTranslationSession(
            listener=listener,
            api_key=api_key,
            model=config.openai_realtime_model,
            target_language=config.target_language,
            client_id=client_id,
            url=config.openai_realtime_url,
            max_reconnect_attempts=config.max_reconnect_attempts,
        )

    return factory


def create_app(config: AppConfig | None = None, *, start_relay: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    `start_relay=False` skips the relay listener (HTTP-only tests).
    """
    config = config or AppConfig.load_from_env()

    if not config.openai_api_key:
        raise RuntimeError("OPENAI_KEY environment variable not set")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        registry = ConnectionRegistry(
            session_factory=build_session_factory(config),
            heartbeat_interval_s=config.heartbeat_interval_s,
        )
        registry.start()
        app.state.registry = registry

        server = None
        if start_relay:
            server = await start_relay_server(
                registry,
                host=config.relay_host,
                port=config.relay_port,
                path=config.relay_path,
            )

        try:
            yield
        finally:
            if server is not None:
                server.close()
                await server.wait_closed()
            await registry.shutdown()
            log_event({"event_type": "APP_SHUTDOWN", "env": config.env})

    app = FastAPI(title="Speech Translation Relay", lifespan=lifespan)

    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # One OpenAI client per process
    app.state.openai_client = AsyncOpenAI(api_key=config.openai_api_key)
    app.state.translator = OneShotTranslator(
        client=app.state.openai_client,
        model=config.oneshot_model,
    )

    register_routes(app)

    return app
