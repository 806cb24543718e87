"""TOML configuration loader.

Loads client, gateway, and relay defaults from defaults.toml and applies
environment overrides on top.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from buddy.schemas.settings import Settings

# Default config directory inside the buddy package
_CONFIG_DIR = Path(__file__).parent / "config"

# Environment variable -> (section, field) overrides
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "BUDDY_CHAT_URL": ("client", "chat_url"),
    "BUDDY_MODEL": ("gateway", "model"),
    "BUDDY_API_BASE": ("gateway", "api_base"),
}


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from a TOML file and the environment.

    Args:
        config_path: Path to a settings TOML. Defaults to buddy/config/defaults.toml.

    Returns:
        The effective Settings.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the TOML structure is invalid.
    """
    path = config_path or _CONFIG_DIR / "defaults.toml"
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    for env_var, (section, field) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            raw.setdefault(section, {})[field] = value

    try:
        return Settings(**raw)
    except ValidationError as e:
        raise ValueError(f"Invalid settings in {path}: {e}") from e
