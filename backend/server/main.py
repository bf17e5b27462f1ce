"""
Process entry point.

Runs the ASGI app under uvicorn. The relay WebSocket listener is started by
the app lifespan on its own port (RELAY_PORT); uvicorn serves HTTP only.
"""

from __future__ import annotations

import uvicorn
from dotenv import load_dotenv

from config import AppConfig


def main() -> None:
    load_dotenv()
    config = AppConfig.load_from_env()

    uvicorn.run(
        "server.asgi:app",
        host=config.http_host,
        port=config.http_port,
        log_level=config.log_level.lower(),
        reload=config.env == "dev",
    )


if __name__ == "__main__":
    main()
