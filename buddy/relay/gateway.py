"""Model gateway access for the chat relay.

Opens a streaming completion through LiteLLM and yields its text deltas.
Transient failures are retried with exponential backoff; failures that
outlive the retries become a GatewayError carrying the HTTP status and
user-facing message the relay should answer with.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from buddy.keys import get_key
from buddy.schemas.settings import GatewaySettings

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a moment."
CREDITS_MESSAGE = "AI credits depleted. Please add credits to continue."
GATEWAY_ERROR_MESSAGE = "AI gateway error"

_BASE_BACKOFF = 1.0  # seconds


class GatewayError(RuntimeError):
    """The gateway could not start a stream.

    Attributes:
        status_code: HTTP status the relay should answer with.
        message: User-facing message for the JSON error body.
    """

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _short_error_reason(error: Exception) -> str:
    """Extract a short reason from a LiteLLM error for log lines."""
    error_str = str(error).lower()
    if "rate" in error_str or "429" in error_str:
        return "rate limit"
    if "timeout" in error_str or isinstance(error, TimeoutError):
        return "timeout"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "500" in error_str or "internal" in error_str:
        return "server error"
    if "connection" in error_str:
        return "connection error"
    return str(error)[:80]


def _to_gateway_error(error: Exception | None) -> GatewayError:
    """Map the last gateway failure to the status and message to report."""
    status = getattr(error, "status_code", None)
    if status == 402:
        return GatewayError(402, CREDITS_MESSAGE)
    if status == 429 or isinstance(error, litellm.RateLimitError):
        return GatewayError(429, RATE_LIMIT_MESSAGE)
    return GatewayError(500, GATEWAY_ERROR_MESSAGE)


class ChatGateway:
    """Streams chat completions from the configured model via LiteLLM."""

    def __init__(self, settings: GatewaySettings) -> None:
        self._settings = settings

    @property
    def model(self) -> str:
        return self._settings.model

    def _build_completion_kwargs(
        self, messages: list[dict[str, str]], api_key: str
    ) -> dict[str, Any]:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "timeout": float(self._settings.timeout),
            "stream": True,
            "api_key": api_key,
        }
        if self._settings.api_base:
            kwargs["api_base"] = self._settings.api_base
        return kwargs

    async def open_stream(
        self, messages: list[dict[str, str]], system: str
    ) -> AsyncIterator[str]:
        """Start a streaming completion and return an iterator of text deltas.

        All failures happen here, before the first delta, so the relay can
        still answer with a JSON error and a matching status.

        Raises:
            GatewayError: If the key is missing or the gateway keeps failing.
        """
        api_key = get_key(self._settings.api_key_env)
        if not api_key:
            raise GatewayError(500, f"{self._settings.api_key_env} is not configured")

        full_messages = [{"role": "system", "content": system}, *messages]
        kwargs = self._build_completion_kwargs(full_messages, api_key)
        response = await self._call_streaming_with_retry(kwargs)
        return self._iter_deltas(response)

    async def _iter_deltas(self, response: Any) -> AsyncIterator[str]:
        async for chunk in response:
            delta = ""
            if chunk.choices and chunk.choices[0].delta:
                delta = chunk.choices[0].delta.content or ""
            if delta:
                yield delta

    async def _call_streaming_with_retry(self, kwargs: dict[str, Any]) -> Any:
        """Call litellm.acompletion with stream=True, retrying transient errors.

        Auth, bad-request, and payment failures are not retried.
        """
        max_retries = self._settings.max_retries
        last_error: Exception | None = None

        for attempt in range(max_retries):
            try:
                return await litellm.acompletion(**kwargs)
            except TimeoutError as e:
                last_error = e
            except litellm.AuthenticationError as e:
                logger.error(
                    "Authentication failed for %s. Check that %s is set correctly.",
                    self._settings.model, self._settings.api_key_env,
                )
                raise _to_gateway_error(e) from e
            except litellm.BadRequestError as e:
                logger.error("Bad request to %s: %s", self._settings.model, e)
                raise _to_gateway_error(e) from e
            except (
                litellm.RateLimitError,
                litellm.ServiceUnavailableError,
                litellm.InternalServerError,
                litellm.APIConnectionError,
            ) as e:
                last_error = e
            except litellm.APIError as e:
                if getattr(e, "status_code", None) == 402:
                    raise _to_gateway_error(e) from e
                last_error = e

            if attempt < max_retries - 1:
                backoff = _BASE_BACKOFF * (2**attempt)
                logger.warning(
                    "Streaming retry %d/%d for %s (%s, backoff: %.1fs)",
                    attempt + 1, max_retries, self._settings.model,
                    _short_error_reason(last_error), backoff,
                )
                await asyncio.sleep(backoff)

        logger.error(
            "Streaming call to %s failed after %d attempts: %s",
            self._settings.model, max_retries, last_error,
        )
        raise _to_gateway_error(last_error) from last_error
