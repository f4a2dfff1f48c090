"""
ZBØTS Configuration — Process settings loaded from the environment.

Reads:
    ENCRYPTION_KEY = <64 hex characters, 32 bytes>
    DATABASE_URL, DISCORD_BOT_TOKEN, DISCORD_CLIENT_ID, DISCORD_GUILD_ID,
    HOST, PORT, TENANT_BOTS, BOT_LOGIN_TIMEOUT, BOT_RECONNECT,
    GROQ_BASE_URL, LLM_MODEL, SYSTEM_PROMPT, ADMIN_API_TOKEN

Security Note:
    Never log key material or tokens. ``Settings.__repr__`` hides them.
"""
import os
from collections.abc import Mapping

import pydantic
from pydantic import BaseModel, Field, field_validator

from .exceptions import ConfigurationError
from .vault.crypto import parse_master_key

DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_LLM_MODEL = "llama-3.1-8b-instant"
DEFAULT_SYSTEM_PROMPT = (
    "You are ZBOT CHT1, a helpful assistant inside a Discord server. "
    "Answer concisely and use Discord markdown where it helps."
)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _describe(err: pydantic.ValidationError) -> str:
    # input values are left out, they may hold secrets
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}"
        for e in err.errors(include_input=False)
    )


class DiscordSettings(BaseModel):
    """Settings for commands that only talk to Discord (``sync-commands``)."""

    discord_bot_token: str | None = Field(default=None, repr=False)
    discord_client_id: str | None = None
    discord_guild_id: str | None = None

    @classmethod
    def env_values(cls, env: Mapping[str, str]) -> dict:
        return {
            "discord_bot_token": env.get("DISCORD_BOT_TOKEN") or None,
            "discord_client_id": env.get("DISCORD_CLIENT_ID") or None,
            "discord_guild_id": env.get("DISCORD_GUILD_ID") or None,
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None):
        """Create settings from environment variables.

        Raises:
            ConfigurationError: If a required value is missing or malformed.
        """
        env = os.environ if environ is None else environ
        try:
            return cls(**cls.env_values(env))
        except pydantic.ValidationError as err:
            raise ConfigurationError(f"Invalid configuration: {_describe(err)}") from None


class Settings(DiscordSettings):
    """Validated process settings."""

    encryption_key: str = Field(repr=False)
    database_url: str | None = Field(default=None, repr=False)
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    tenant_bots: bool = False
    bot_login_timeout: float = Field(default=30.0, gt=0)
    bot_reconnect: bool = True
    groq_base_url: str = DEFAULT_GROQ_BASE_URL
    llm_model: str = DEFAULT_LLM_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    admin_api_token: str | None = Field(default=None, repr=False)

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        """Ensure the master key is 64 hex characters."""
        try:
            parse_master_key(v)
        except ConfigurationError as err:
            raise ValueError(str(err)) from None
        return v.strip()

    @property
    def master_key(self) -> bytes:
        return parse_master_key(self.encryption_key)

    def require_database(self) -> str:
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL environment variable is not set.")
        return self.database_url

    @classmethod
    def env_values(cls, env: Mapping[str, str]) -> dict:
        values = super().env_values(env)
        values.update({
            "encryption_key": env.get("ENCRYPTION_KEY", ""),
            "database_url": env.get("DATABASE_URL") or None,
            "tenant_bots": _env_bool(env.get("TENANT_BOTS"), False),
            "bot_reconnect": _env_bool(env.get("BOT_RECONNECT"), True),
            "admin_api_token": env.get("ADMIN_API_TOKEN") or None,
        })
        optional = {
            "host": "HOST",
            "port": "PORT",
            "bot_login_timeout": "BOT_LOGIN_TIMEOUT",
            "groq_base_url": "GROQ_BASE_URL",
            "llm_model": "LLM_MODEL",
            "system_prompt": "SYSTEM_PROMPT",
        }
        for field, var in optional.items():
            if env.get(var):
                values[field] = env[var]
        return values
