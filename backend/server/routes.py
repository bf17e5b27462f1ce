"""
Route registration for the relay's HTTP surface.

Responsibilities:
- Health check for load balancers
- One-shot translation endpoint
- Pull dependencies from app.state

The realtime relay itself is served by server/relay.py, not by FastAPI.
"""

from __future__ import annotations

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from adapters.translation.errors import InvalidAudioPayload, OneShotTranslationError
from adapters.translation.oneshot import OneShotTranslator


class TranslateRequest(BaseModel):
    """Full recording, raw base64 or data-URI."""
    audio_base64: str = Field(alias="audioBase64", min_length=1)
    container: str | None = None


class TranslateResponse(BaseModel):
    text: str


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.post("/translate", response_model=TranslateResponse)
    async def translate(body: TranslateRequest) -> TranslateResponse: # pyright: ignore[reportUnusedFunction]
        translator: OneShotTranslator = app.state.translator
        try:
            text = await translator.translate(body.audio_base64, body.container)
        except InvalidAudioPayload as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except OneShotTranslationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return TranslateResponse(text=text)
