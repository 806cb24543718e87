"""Message schemas for chat requests and parsed assistant responses.

Defines the request envelope posted to the relay, the sentinel vocabularies
embedded in assistant text, and the results of response post-processing.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatRole(StrEnum):
    """Speaker of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


class ChatMode(StrEnum):
    """Conversation flow the relay builds its system prompt for."""

    CHAT = "chat"
    INTAKE = "intake"
    COMMUNICATION = "communication"


class ChatMessage(BaseModel):
    """One turn of conversation history in OpenAI message format."""

    role: ChatRole = Field(description="Who said it")
    content: str = Field(description="Message text")


class ChatRequest(BaseModel):
    """Body of a POST to the chat relay.

    The decoder is agnostic to these fields; they are forwarded to the
    relay, which owns their interpretation.
    """

    messages: list[ChatMessage] = Field(description="Conversation so far, oldest first")
    preferences: dict[str, Any] | None = Field(
        default=None, description="User preferences used to tailor the prompt"
    )
    mode: ChatMode | None = Field(default=None, description="Conversation flow")


class MarkerSpec(BaseModel):
    """A begin/end sentinel pair delimiting an embedded JSON record."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Short record kind name (e.g. 'entry')")
    begin: str = Field(min_length=1, description="Literal begin marker")
    end: str = Field(min_length=1, description="Literal end marker")


ENTRY_SAVE = MarkerSpec(name="entry", begin="[ENTRY_SAVE]", end="[/ENTRY_SAVE]")
INTAKE_COMPLETE = MarkerSpec(
    name="intake", begin="[INTAKE_COMPLETE]", end="[/INTAKE_COMPLETE]"
)

MARKER_SPECS: dict[str, MarkerSpec] = {
    ENTRY_SAVE.name: ENTRY_SAVE,
    INTAKE_COMPLETE.name: INTAKE_COMPLETE,
}


class StructuredExtraction(BaseModel):
    """Result of pulling one sentinel-delimited record out of a response."""

    display_text: str = Field(description="Text with the marker region removed")
    payload: dict[str, Any] | None = Field(
        default=None, description="Parsed record, or None when absent or malformed"
    )


class ChipExtraction(BaseModel):
    """Result of pulling the quick-reply directive out of a response."""

    display_text: str = Field(description="Text with the CHIPS line removed")
    chips: list[str] = Field(default_factory=list, description="Suggestions in display order")


class ParsedResponse(BaseModel):
    """Final form of one assistant reply, as handed to UI and persistence."""

    display_text: str = Field(description="User-visible message text")
    chips: list[str] = Field(default_factory=list, description="Quick-reply suggestions")
    structured_payload: dict[str, Any] | None = Field(
        default=None, description="Record to persist, if the reply carried one"
    )
    record_kind: str | None = Field(
        default=None, description="MarkerSpec name of the extracted record"
    )
