"""System prompt templates for each chat mode.

Loads Markdown prompt templates from the prompts/ directory and renders
them with Jinja2, using the user's preferences as template variables.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import BaseLoader, Environment

from buddy.schemas.messages import ChatMode

# Directory containing the .md prompt template files
_PROMPTS_DIR = Path(__file__).parent

# Wording used for each pain_preference value
_PAIN_FORMATS: dict[str, str] = {
    "numeric": "Ask about pain using a 0-10 numeric scale.",
    "verbal": "Ask about pain using words: none, mild, moderate, severe, unbearable.",
    "faces": "Ask about pain using emoji faces, from no pain to unbearable.",
    "adaptive": (
        "Choose the most natural way to ask about pain intensity based on "
        "the conversation flow: numbers, words, or emoji faces."
    ),
}


def render_prompt(template_name: str, **variables: object) -> str:
    """Load a prompt template and render it with Jinja2 variables.

    Args:
        template_name: Name of the template file (without .md extension).
        **variables: Template variables to inject.

    Returns:
        The fully rendered prompt string.

    Raises:
        FileNotFoundError: If the template file does not exist.
    """
    path = _PROMPTS_DIR / f"{template_name}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")

    template_text = path.read_text(encoding="utf-8")

    # Default Undefined renders as empty, so {% if var %} guards skip cleanly
    env = Environment(loader=BaseLoader(), keep_trailing_newline=True)
    template = env.from_string(template_text)
    return template.render(**variables)


def build_system_prompt(
    mode: ChatMode | None,
    preferences: dict[str, Any] | None = None,
) -> str:
    """Render the system prompt for a chat mode from user preferences."""
    prefs = preferences or {}
    pain_preference = prefs.get("pain_preference") or "numeric"

    return render_prompt(
        (mode or ChatMode.CHAT).value,
        buddy_name=prefs.get("buddy_name") or "Buddy",
        pain_format=_PAIN_FORMATS.get(pain_preference, _PAIN_FORMATS["numeric"]),
        identity_tags=list(prefs.get("identity_tags") or []),
        symptoms=list(prefs.get("my_symptoms") or []),
        communication_style=prefs.get("communication_style") or "",
    )
