"""Chat client for the Buddy relay.

POSTs a ChatRequest to the relay, surfaces transport failures as a single
ChatTransportError before any decoding begins, then drives the frame
decoder over the streamed response body.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx

from buddy.keys import get_key
from buddy.schemas.messages import ChatRequest
from buddy.settings import load_settings
from buddy.stream.decoder import DeltaCallback, decode_stream

logger = logging.getLogger(__name__)

# Shown when the relay gives no usable error message
DEFAULT_ERROR_MESSAGE = "Failed to connect to Buddy"

_DEFAULT_TIMEOUT = 60.0  # seconds


class ChatTransportError(RuntimeError):
    """The chat request failed before streaming started.

    Attributes:
        message: Human-readable reason, suitable for a user notification.
        status_code: HTTP status of the failed response, or None when no
                     response was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def error_message_from_body(body: bytes | str) -> str:
    """Return the ``error`` field of a JSON error body, or the generic message."""
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return DEFAULT_ERROR_MESSAGE
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, str) and error:
            return error
    return DEFAULT_ERROR_MESSAGE


async def _body_chunks(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield raw body chunks; a transport error mid-body ends the stream."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.TransportError as e:
        logger.warning("Chat stream interrupted: %s", e)


async def stream_chat(
    request: ChatRequest,
    on_delta: DeltaCallback,
    on_done: Callable[[], Awaitable[None] | None] | None = None,
    *,
    url: str | None = None,
    api_key: str | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float | httpx.Timeout | None = None,
) -> None:
    """Send a chat request and stream the reply's text deltas.

    Args:
        request: Messages, preferences, and mode to send.
        on_delta: Called with each text delta, in order. May be async.
        on_done: Called exactly once after the stream has been fully
                 decoded. May be async.
        url: Relay chat endpoint. Defaults to the configured client.chat_url.
        api_key: Bearer token. Defaults to the configured key env var.
        client: Optional shared AsyncClient; one is created and closed
                per call otherwise.
        timeout: Per-read timeout. Defaults to the configured client timeout.

    Raises:
        ChatTransportError: If the relay is unreachable or answers with a
            non-success status. No delta has been delivered in that case.
    """
    if url is None or api_key is None:
        settings = load_settings().client
        url = url or settings.chat_url
        api_key = api_key if api_key is not None else get_key(settings.api_key_env)
        timeout = timeout if timeout is not None else settings.timeout
    if timeout is None:
        timeout = _DEFAULT_TIMEOUT

    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    body = request.model_dump(mode="json", exclude_none=True)

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout)

    try:
        try:
            async with client.stream("POST", url, json=body, headers=headers) as response:
                if not response.is_success:
                    raw = await response.aread()
                    message = error_message_from_body(raw)
                    logger.warning(
                        "Chat request failed (%d): %s", response.status_code, message
                    )
                    raise ChatTransportError(message, response.status_code)

                await decode_stream(_body_chunks(response), on_delta)
        except httpx.TransportError as e:
            logger.warning("Chat request to %s failed: %s", url, e)
            raise ChatTransportError(DEFAULT_ERROR_MESSAGE) from e
    finally:
        if owns_client:
            await client.aclose()

    if on_done is not None:
        result = on_done()
        if asyncio.iscoroutine(result):
            await result
