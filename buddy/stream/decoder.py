"""Incremental decoder for the chat relay's event-stream framing.

Consumes raw transport chunks, reassembles UTF-8 text across chunk
boundaries, splits it into lines, and pulls the delta text out of each
``data: <json>`` frame. Each stream gets its own FrameDecoder, so
concurrent streams never share buffer state.

Framing, one event per line:

    : keep-alive comment
    data: {"choices": [{"delta": {"content": "Hi"}}]}
    data: [DONE]
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any

from buddy.schemas.streaming import (
    DATA_PREFIX,
    DONE_SENTINEL,
    FrameKind,
    classify_frame,
)

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str], Awaitable[None] | None]


def extract_delta(payload: Any) -> str | None:
    """Return ``choices[0].delta.content`` from a parsed frame payload.

    Any missing key, wrong type, or empty string yields None. Frames that
    carry no text (role-only frames, usage frames) are not errors.
    """
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def _data_payload(line: str) -> str | None:
    """Return the trimmed payload of a data frame, or None for any other frame."""
    kind = classify_frame(line)
    if kind is not FrameKind.DATA:
        if kind is FrameKind.UNRECOGNIZED:
            logger.debug("Ignoring unrecognized frame: %.60r", line)
        return None
    return line[len(DATA_PREFIX):].strip()


class FrameDecoder:
    """Per-stream decoder state: text buffer, UTF-8 continuation, finished flag.

    Usage:
        decoder = FrameDecoder()
        for chunk in chunks:
            for delta in decoder.feed(chunk):
                ...
            if decoder.finished:
                break
        for delta in decoder.flush():
            ...
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._finished = False

    @property
    def finished(self) -> bool:
        """True once the terminal ``[DONE]`` frame has been seen."""
        return self._finished

    @property
    def pending(self) -> str:
        """Decoded text not yet consumed as a complete frame."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[str]:
        """Append one transport chunk and return the deltas it completes.

        A data line whose JSON does not parse is treated as cut off by a
        chunk boundary: it goes back to the front of the buffer and line
        consumption stops until more data arrives.
        """
        if self._finished:
            return []

        if isinstance(chunk, bytes):
            self._buffer += self._utf8.decode(chunk)
        else:
            self._buffer += chunk

        deltas: list[str] = []
        while True:
            newline = self._buffer.find("\n")
            if newline == -1:
                break

            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            if line.endswith("\r"):
                line = line[:-1]

            payload = _data_payload(line)
            if not payload:
                continue
            if payload == DONE_SENTINEL:
                self._finished = True
                break

            try:
                parsed = json.loads(payload)
            except json.JSONDecodeError:
                logger.debug("Incomplete data frame, waiting for more input")
                self._buffer = line + "\n" + self._buffer
                break

            delta = extract_delta(parsed)
            if delta:
                deltas.append(delta)

        return deltas

    def flush(self) -> list[str]:
        """Process whatever is left once the transport has ended.

        The last line need not be newline-terminated. Data lines that still
        do not parse are dropped, since nothing more can complete them.
        Nothing is emitted after ``[DONE]``.
        """
        if self._finished:
            self._buffer = ""
            return []

        self._buffer += self._utf8.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""

        deltas: list[str] = []
        for line in remaining.split("\n"):
            if line.endswith("\r"):
                line = line[:-1]

            payload = _data_payload(line)
            if not payload:
                continue
            if payload == DONE_SENTINEL:
                self._finished = True
                break

            try:
                parsed = json.loads(payload)
            except json.JSONDecodeError:
                logger.warning("Dropping malformed data frame at end of stream")
                continue

            delta = extract_delta(parsed)
            if delta:
                deltas.append(delta)

        return deltas


async def decode_stream(
    chunks: AsyncIterable[bytes | str],
    on_delta: DeltaCallback,
) -> None:
    """Decode a whole transport stream, invoking on_delta for every delta.

    on_delta may be a plain function or a coroutine function; coroutine
    results are awaited before the next chunk is requested. Reading stops
    at the ``[DONE]`` frame.

    Args:
        chunks: Async iterable of raw transport chunks, in arrival order.
        on_delta: Callback receiving each text delta in order.
    """
    async for delta in iter_deltas(chunks):
        result = on_delta(delta)
        if asyncio.iscoroutine(result):
            await result


async def iter_deltas(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
    """Async-iterator form of decode_stream: yield text deltas in order.

    A chunk source with ``aclose()`` (an async generator) is closed on the
    way out, including when reading stops early at ``[DONE]``.
    """
    decoder = FrameDecoder()

    try:
        async for chunk in chunks:
            for delta in decoder.feed(chunk):
                yield delta
            if decoder.finished:
                break

        for delta in decoder.flush():
            yield delta
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
