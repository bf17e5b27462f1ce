"""
ASGI entry point for the relay.

Used by uvicorn (see server/main.py). `.env` is loaded before the config is
read; the relay WebSocket listener starts with the app lifespan.
"""

from dotenv import load_dotenv

load_dotenv()

from config import AppConfig  # pylint: disable=wrong-import-position
from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app(AppConfig.load_from_env())
