"""Streaming chat-response protocol: frame decoding and response extraction."""

from buddy.stream.decoder import (
    FrameDecoder,
    decode_stream,
    extract_delta,
    iter_deltas,
)
from buddy.stream.extractor import (
    extract_chips,
    extract_structured,
    live_display_text,
    parse_response,
)

__all__ = [
    "FrameDecoder",
    "decode_stream",
    "extract_chips",
    "extract_delta",
    "extract_structured",
    "iter_deltas",
    "live_display_text",
    "parse_response",
]
