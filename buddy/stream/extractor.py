"""Post-processing of assembled assistant text.

Pulls sentinel-delimited JSON records and the ``CHIPS:`` quick-reply
directive out of a finished response, leaving the text the user sees.

Whitespace rule: after a directive is removed the whole text is stripped
of leading and trailing whitespace; interior whitespace is left alone.
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from typing import Any

from buddy.schemas.messages import (
    ENTRY_SAVE,
    MARKER_SPECS,
    ChipExtraction,
    MarkerSpec,
    ParsedResponse,
    StructuredExtraction,
)

logger = logging.getLogger(__name__)

# Quick-reply directive, anchored to its own line and carrying at least one
# non-blank character. The directive line and its newline go together.
_CHIPS_RE = re.compile(r"^CHIPS:[ \t]*(\S.*)$\n?", re.MULTILINE)

# A directive line still being streamed, not yet newline-terminated
_CHIPS_TAIL_RE = re.compile(r"^CHIPS:[^\n]*\Z", re.MULTILINE)


@lru_cache(maxsize=16)
def _region_re(begin: str, end: str) -> re.Pattern[str]:
    """Non-greedy begin...end region; never spans past the first end marker."""
    return re.compile(re.escape(begin) + r"(.*?)" + re.escape(end), re.DOTALL)


def _check_text(text: object) -> str:
    if not isinstance(text, str):
        raise TypeError(f"expected str, got {type(text).__name__}")
    return text


def extract_structured(full_text: str, spec: MarkerSpec = ENTRY_SAVE) -> StructuredExtraction:
    """Extract the first record delimited by spec's markers.

    The first begin...end region wins: its interior (whitespace trimmed) is
    parsed as JSON, and every region of this kind is removed from the
    display text so a second pass finds nothing. A region whose interior is
    not a JSON object still gets removed; the payload is None.

    Args:
        full_text: The fully assembled response text.
        spec: Marker vocabulary to look for.

    Returns:
        StructuredExtraction with the cleaned text and payload (or None).

    Raises:
        TypeError: If full_text is not a string.
    """
    text = _check_text(full_text)
    pattern = _region_re(spec.begin, spec.end)

    match = pattern.search(text)
    if match is None:
        return StructuredExtraction(display_text=text, payload=None)

    payload = _parse_record(match.group(1), spec)

    # Removing one region can splice its neighbours into a new one
    display_text, removed = pattern.subn("", text)
    while pattern.search(display_text) is not None:
        display_text, count = pattern.subn("", display_text)
        removed += count
    if removed > 1:
        logger.warning(
            "Response carried %d %s records; keeping the first", removed, spec.name
        )

    return StructuredExtraction(display_text=display_text.strip(), payload=payload)


def _parse_record(interior: str, spec: MarkerSpec) -> dict[str, Any] | None:
    """Parse a marker interior, returning None for anything but a JSON object."""
    try:
        parsed = json.loads(interior.strip())
    except json.JSONDecodeError:
        logger.warning("Failed to parse %s record from response", spec.name)
        return None
    if not isinstance(parsed, dict):
        logger.warning(
            "Ignoring %s record: expected a JSON object, got %s",
            spec.name, type(parsed).__name__,
        )
        return None
    return parsed


def extract_chips(text: str) -> ChipExtraction:
    """Extract quick-reply suggestions from the first ``CHIPS:`` line.

    The captured list is split on ``|``; pieces are trimmed, empty pieces
    dropped, order kept, duplicates kept. Every directive line is removed
    from the display text, not just the one the chips came from. A
    ``CHIPS:`` line with nothing after it is not a directive.

    Raises:
        TypeError: If text is not a string.
    """
    text = _check_text(text)

    match = _CHIPS_RE.search(text)
    if match is None:
        return ChipExtraction(display_text=text, chips=[])

    chips = [piece.strip() for piece in match.group(1).split("|")]
    chips = [chip for chip in chips if chip]

    display_text, removed = _CHIPS_RE.subn("", text)
    if removed > 1:
        logger.debug("Dropped %d extra CHIPS lines", removed - 1)

    return ChipExtraction(display_text=display_text.strip(), chips=chips)


def parse_response(full_text: str, spec: MarkerSpec = ENTRY_SAVE) -> ParsedResponse:
    """Run record extraction, then chip extraction, on a finished response.

    Record extraction runs first so text inside a record that happens to
    look like a chip directive never reaches the chip parser.
    """
    structured = extract_structured(full_text, spec)
    chips = extract_chips(structured.display_text)

    return ParsedResponse(
        display_text=chips.display_text,
        chips=chips.chips,
        structured_payload=structured.payload,
        record_kind=spec.name if structured.payload is not None else None,
    )


def live_display_text(partial_text: str, specs: list[MarkerSpec] | None = None) -> str:
    """Text to show while a response is still streaming.

    Removes complete marker regions and everything from an unterminated
    begin marker onward. Chip lines are removed the way extract_chips
    removes them, and a trailing ``CHIPS:`` line that is still arriving
    is hidden, so directive text never flashes on screen before the
    final parse.
    """
    text = _check_text(partial_text)

    for spec in specs or list(MARKER_SPECS.values()):
        pattern = _region_re(spec.begin, spec.end)
        while pattern.search(text) is not None:
            text = pattern.sub("", text)
        open_at = text.find(spec.begin)
        if open_at != -1:
            text = text[:open_at]

    text = _CHIPS_RE.sub("", text)
    text = _CHIPS_TAIL_RE.sub("", text)
    return text.strip()
