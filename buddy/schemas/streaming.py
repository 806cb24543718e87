"""Streaming schemas for the chat wire format.

Defines the frame classification used by the decoder and the StreamChunk
model handed to live displays while a response is arriving.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

# Literal prefix of a data frame, including the single separating space
DATA_PREFIX = "data: "

# Terminal sentinel carried by the last data frame of a stream
DONE_SENTINEL = "[DONE]"


class FrameKind(StrEnum):
    """Classification of one newline-terminated line of the stream."""

    COMMENT = "comment"
    BLANK = "blank"
    DATA = "data"
    UNRECOGNIZED = "unrecognized"


def classify_frame(line: str) -> FrameKind:
    """Classify a single line (trailing newline and CR already removed)."""
    if line.strip() == "":
        return FrameKind.BLANK
    if line.startswith(":"):
        return FrameKind.COMMENT
    if line.startswith(DATA_PREFIX):
        return FrameKind.DATA
    return FrameKind.UNRECOGNIZED


class StreamChunk(BaseModel):
    """A single delta of streaming output, with the text accumulated so far."""

    delta: str = Field(description="New text in this chunk")
    accumulated: str = Field(description="Full text accumulated so far")
    token_count: int = Field(ge=0, description="Running count of deltas received")
    is_complete: bool = Field(
        default=False, description="True on final chunk"
    )
