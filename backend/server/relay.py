"""
Client-facing WebSocket relay listener.

Responsibilities:
- Accept WebSocket connections on the relay path
- Adapt websockets ServerConnection to the registry's ClientTransport
- Run one receive loop per connection, feeding frames to the registry
- Report close/error to the registry exactly once per connection

Built-in keepalive is disabled (ping_interval=None): liveness pings are
owned by ConnectionRegistry so each pong can be answered with a PONG
envelope.
"""

from __future__ import annotations

from typing import Any, Awaitable

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from observability.logger import log_event
from session.client_connection import DeviceInfo
from session.registry import ConnectionRegistry

# RFC 6455 policy violation
CLOSE_POLICY_VIOLATION = 1008


class WebSocketClientTransport:
    """ClientTransport over a websockets ServerConnection."""

    def __init__(self, ws: ServerConnection) -> None:
        self._ws = ws

    @property
    def is_open(self) -> bool:
        return self._ws.state is State.OPEN

    async def send_text(self, text: str) -> None:
        await self._ws.send(text)

    async def ping(self) -> Awaitable[Any]:
        return await self._ws.ping()

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._ws.close(code, reason)


def _device_info(ws: ServerConnection) -> DeviceInfo:
    request = ws.request
    if request is None:
        return DeviceInfo()
    return DeviceInfo(user_agent=request.headers.get("User-Agent", ""))


class RelayHandler:
    """websockets connection handler bound to one registry."""

    def __init__(self, *, registry: ConnectionRegistry, path: str = "/ws") -> None:
        self._registry = registry
        self._path = path

    async def __call__(self, ws: ServerConnection) -> None:
        request_path = ws.request.path if ws.request is not None else ""
        if request_path.split("?", 1)[0] != self._path:
            log_event({
                "event_type": "RELAY_PATH_REJECTED",
                "path": request_path,
            })
            await ws.close(CLOSE_POLICY_VIOLATION, "unknown path")
            return

        connection = await self._registry.accept(
            WebSocketClientTransport(ws),
            _device_info(ws),
        )

        reason = "client_disconnect"
        try:
            async for message in ws:
                await self._registry.on_message(connection.id, message)
        except ConnectionClosed as exc:
            reason = f"client_error: {exc!r}"
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "client_id": connection.id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            reason = "server_error"
        finally:
            await self._registry.on_close(connection.id, reason=reason)


async def start_relay_server(
    registry: ConnectionRegistry,
    *,
    host: str,
    port: int,
    path: str = "/ws",
) -> Server:
    """
    Start listening; returns the websockets Server.

    Caller closes it with `server.close(); await server.wait_closed()`.
    """
    server = await serve(
        RelayHandler(registry=registry, path=path),
        host,
        port,
        ping_interval=None,
    )
    log_event({
        "event_type": "RELAY_LISTENING",
        "host": host,
        "port": port,
        "path": path,
    })
    return server
