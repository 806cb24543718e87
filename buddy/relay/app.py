"""Buddy chat relay.

FastAPI application that builds the system prompt for a chat request,
streams the model's reply through the gateway, and re-emits it in the
event-stream framing the chat client decodes:

    data: {"choices": [{"delta": {"content": "..."}}]}

    data: [DONE]
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from buddy import __version__
from buddy.prompts import build_system_prompt
from buddy.relay.gateway import ChatGateway, GatewayError
from buddy.schemas.messages import ChatRequest
from buddy.schemas.settings import Settings
from buddy.schemas.streaming import DATA_PREFIX, DONE_SENTINEL
from buddy.settings import load_settings

logger = logging.getLogger(__name__)


def encode_delta_frame(delta: str) -> str:
    """One data frame carrying a text delta, blank-line terminated."""
    payload = {"choices": [{"delta": {"content": delta}}]}
    return f"{DATA_PREFIX}{json.dumps(payload, ensure_ascii=False)}\n\n"


DONE_FRAME = f"{DATA_PREFIX}{DONE_SENTINEL}\n\n"


async def _event_stream(deltas: AsyncIterator[str]) -> AsyncIterator[str]:
    """Frame gateway deltas; a mid-stream failure ends the stream early."""
    try:
        async for delta in deltas:
            yield encode_delta_frame(delta)
    except Exception:
        # Headers are already sent; the client keeps what it has received
        logger.exception("Gateway stream failed mid-response")
        return
    yield DONE_FRAME


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    settings: Settings | None = None,
    gateway: ChatGateway | None = None,
) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Effective settings. Defaults to load_settings().
        gateway: Gateway to stream from. Defaults to one built from settings.
    """
    settings = settings or load_settings()
    gateway = gateway or ChatGateway(settings.gateway)

    app = FastAPI(title="Buddy Chat Relay", version=__version__)
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.relay.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/buddyChat")
    async def buddy_chat(request: ChatRequest):
        """Stream one assistant reply for the given conversation."""
        system = build_system_prompt(request.mode, request.preferences)
        messages = [m.model_dump(mode="json") for m in request.messages]

        try:
            deltas = await app.state.gateway.open_stream(messages, system)
        except GatewayError as e:
            return _error_response(e.status_code, e.message)

        logger.info(
            "Streaming %s reply (%d messages)",
            (request.mode or "chat"), len(messages),
        )
        return StreamingResponse(
            _event_stream(deltas),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    return app
