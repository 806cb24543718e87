"""API key loading for Buddy.

Keys are read from ~/.buddy/keys.env and .env with this priority:
  1. Environment variables (highest, already set in shell)
  2. ~/.buddy/keys.env (user-level keys)
  3. .env in current directory (project-level)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Directory for user-level Buddy configuration
BUDDY_HOME = Path.home() / ".buddy"
KEYS_FILE = BUDDY_HOME / "keys.env"


def load_keys_env(files: list[Path] | None = None) -> None:
    """Load keys from keys.env files into os.environ.

    Existing env vars are NOT overwritten, and earlier files win over
    later ones.

    Args:
        files: Files to read, in priority order. Defaults to
               ~/.buddy/keys.env followed by ./.env.
    """
    if files is None:
        files = [KEYS_FILE, Path.cwd() / ".env"]
    for env_file in files:
        if env_file.is_file():
            _load_env_file(env_file)


def _load_env_file(path: Path) -> None:
    """Parse a simple KEY=VALUE .env file and set vars that aren't already set."""
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key and not os.environ.get(key):
                os.environ[key] = value
                logger.debug("Loaded %s from %s", key, path)
    except OSError:
        logger.debug("Could not read %s", path)


def get_key(env_var: str) -> str:
    """Return the value of a key env var, or an empty string when unset."""
    return os.environ.get(env_var, "")
