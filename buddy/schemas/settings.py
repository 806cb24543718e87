"""Configuration schema for the chat client, relay, and CLI.

Loaded from defaults.toml by buddy.settings and overridden by environment
variables at load time.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ClientSettings(BaseModel):
    """Where and how the chat client reaches the relay."""

    chat_url: str = Field(description="Full URL of the relay's chat endpoint")
    api_key_env: str = Field(
        default="BUDDY_API_KEY",
        description="Environment variable holding the relay bearer token",
    )
    timeout: float = Field(
        default=60.0, gt=0, description="Read timeout in seconds between chunks"
    )


class GatewaySettings(BaseModel):
    """How the relay reaches the model gateway through LiteLLM."""

    model: str = Field(description="LiteLLM model identifier")
    api_base: str = Field(default="", description="Custom API base URL (empty = provider default)")
    api_key_env: str = Field(description="Environment variable holding the gateway key")
    timeout: int = Field(default=120, gt=0, description="Gateway call timeout in seconds")
    max_retries: int = Field(default=3, ge=1, description="Attempts for transient failures")


class RelaySettings(BaseModel):
    """Bind address for `buddy serve`."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8787, gt=0, lt=65536)
    allow_origins: list[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseModel):
    """Effective configuration for one process."""

    client: ClientSettings
    gateway: GatewaySettings
    relay: RelaySettings = Field(default_factory=RelaySettings)
