"""Buddy schema definitions.

Pydantic v2 models for the chat wire format, requests, and parsed replies.
"""

from buddy.schemas.messages import (
    ENTRY_SAVE,
    INTAKE_COMPLETE,
    MARKER_SPECS,
    ChatMessage,
    ChatMode,
    ChatRequest,
    ChatRole,
    ChipExtraction,
    MarkerSpec,
    ParsedResponse,
    StructuredExtraction,
)
from buddy.schemas.settings import Settings
from buddy.schemas.streaming import (
    DATA_PREFIX,
    DONE_SENTINEL,
    FrameKind,
    StreamChunk,
    classify_frame,
)

__all__ = [
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "ENTRY_SAVE",
    "INTAKE_COMPLETE",
    "MARKER_SPECS",
    "ChatMessage",
    "ChatMode",
    "ChatRequest",
    "ChatRole",
    "ChipExtraction",
    "FrameKind",
    "MarkerSpec",
    "ParsedResponse",
    "Settings",
    "StreamChunk",
    "StructuredExtraction",
    "classify_frame",
]
