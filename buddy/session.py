"""Chat turns and sessions.

A ChatTurn owns the accumulated text of one streamed reply. It offers the
live view shown while the reply arrives and, once the stream completes,
runs response extraction and hands any record to the caller's sink.
ChatSession keeps the conversation history across turns.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from buddy.client import stream_chat
from buddy.schemas.messages import (
    ENTRY_SAVE,
    INTAKE_COMPLETE,
    ChatMessage,
    ChatMode,
    ChatRequest,
    ChatRole,
    MarkerSpec,
    ParsedResponse,
)
from buddy.schemas.streaming import StreamChunk
from buddy.stream.extractor import live_display_text, parse_response

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[StreamChunk], Awaitable[None] | None]
RecordSink = Callable[[str, dict[str, Any]], Awaitable[None] | None]


async def _maybe_await(result: object) -> None:
    if asyncio.iscoroutine(result):
        await result


def marker_spec_for(mode: ChatMode | None) -> MarkerSpec:
    """Record vocabulary a reply in the given mode is parsed for."""
    if mode == ChatMode.INTAKE:
        return INTAKE_COMPLETE
    return ENTRY_SAVE


class ChatTurn:
    """Accumulator and post-processor for one streamed assistant reply.

    Pass ``turn.on_delta`` to stream_chat, then call ``finish()`` from the
    completion callback (or after stream_chat returns).
    """

    def __init__(
        self,
        spec: MarkerSpec = ENTRY_SAVE,
        *,
        on_chunk: ChunkCallback | None = None,
        record_sink: RecordSink | None = None,
    ) -> None:
        self._spec = spec
        self._on_chunk = on_chunk
        self._record_sink = record_sink
        self._parts: list[str] = []
        self._delta_count = 0
        self._parsed: ParsedResponse | None = None
        self._result: ParsedResponse | None = None

    @property
    def accumulated(self) -> str:
        """Every delta received so far, concatenated in arrival order."""
        return "".join(self._parts)

    @property
    def display_text(self) -> str:
        """What to show right now; directives are hidden while streaming."""
        if self._parsed is not None:
            return self._parsed.display_text
        return live_display_text(self.accumulated)

    @property
    def result(self) -> ParsedResponse | None:
        return self._result

    async def on_delta(self, delta: str) -> None:
        if self._parsed is not None:
            raise RuntimeError("ChatTurn already finished")
        self._parts.append(delta)
        self._delta_count += 1
        if self._on_chunk is not None:
            await _maybe_await(self._on_chunk(StreamChunk(
                delta=delta,
                accumulated=self.accumulated,
                token_count=self._delta_count,
            )))

    async def finish(self) -> ParsedResponse:
        """Parse the completed reply and hand any record to the sink.

        Safe to call more than once; the record is delivered only once. If
        the sink raises, the turn stays unfinished and a later call
        delivers the record again.
        """
        if self._result is not None:
            return self._result

        if self._parsed is None:
            full_text = self.accumulated
            self._parsed = parse_response(full_text, self._spec)

            if self._on_chunk is not None:
                await _maybe_await(self._on_chunk(StreamChunk(
                    delta="",
                    accumulated=full_text,
                    token_count=self._delta_count,
                    is_complete=True,
                )))

        payload = self._parsed.structured_payload
        if payload is not None:
            logger.info("Extracted %s record with %d fields", self._spec.name, len(payload))
            if self._record_sink is not None:
                await _maybe_await(self._record_sink(self._spec.name, payload))

        self._result = self._parsed
        return self._result


class ChatSession:
    """Conversation history plus the request options sent with every turn.

    History stores the cleaned display text of assistant replies, never
    the raw directives.
    """

    def __init__(
        self,
        *,
        mode: ChatMode | None = None,
        preferences: dict[str, Any] | None = None,
        record_sink: RecordSink | None = None,
        url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.mode = mode
        self.preferences = preferences
        self.history: list[ChatMessage] = []
        self._record_sink = record_sink
        self._url = url
        self._api_key = api_key
        self._client = client

    async def send(
        self,
        text: str,
        *,
        on_chunk: ChunkCallback | None = None,
    ) -> ParsedResponse:
        """Send one user message and stream the reply.

        The user message is dropped from history again if the request or
        the record sink fails, so a retry does not send it twice.

        Raises:
            ValueError: If text is blank.
            ChatTransportError: If the relay call fails before streaming.
        """
        text = text.strip()
        if not text:
            raise ValueError("Cannot send an empty message")

        self.history.append(ChatMessage(role=ChatRole.USER, content=text))
        turn = ChatTurn(
            marker_spec_for(self.mode),
            on_chunk=on_chunk,
            record_sink=self._record_sink,
        )
        request = ChatRequest(
            messages=list(self.history),
            preferences=self.preferences,
            mode=self.mode,
        )

        try:
            await stream_chat(
                request,
                turn.on_delta,
                url=self._url,
                api_key=self._api_key,
                client=self._client,
            )
            result = await turn.finish()
        except BaseException:
            self.history.pop()
            raise

        self.history.append(
            ChatMessage(role=ChatRole.ASSISTANT, content=result.display_text)
        )
        return result
