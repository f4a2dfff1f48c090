"""
Slash command definitions and registration with Discord.

Registration is a one-off operator task (``zbots sync-commands``): commands
are upserted globally, or to a single guild when ``guild_id`` is given
(guild commands update instantly, which suits testing).
"""
from __future__ import annotations

import logging
from typing import Any

import discord

from ..exceptions import AuthenticationRejected, ConfigurationError
from .router import CommandName

logger = logging.getLogger("zbots.bot")

_STRING_OPTION = discord.AppCommandOptionType.string.value
_ADMIN_ONLY = str(discord.Permissions(administrator=True).value)

COMMAND_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": CommandName.SETKEY.value,
        "description": "Set the Groq API key for this server (Admin only).",
        "options": [
            {
                "name": "key",
                "type": _STRING_OPTION,
                "description": "Your Groq API key (starts with gsk_).",
                "required": True,
            },
        ],
        "default_member_permissions": _ADMIN_ONLY,
        "dm_permission": False,
    },
    {
        "name": CommandName.REMOVEKEY.value,
        "description": "Remove the stored Groq API key for this server (Admin only).",
        "default_member_permissions": _ADMIN_ONLY,
        "dm_permission": False,
    },
    {
        "name": CommandName.CHATBOT.value,
        "description": "Chat with the AI!",
        "options": [
            {
                "name": "prompt",
                "type": _STRING_OPTION,
                "description": "Your message to the AI.",
                "required": True,
            },
        ],
    },
]


async def sync_commands(
    token: str,
    application_id: str | None = None,
    guild_id: str | None = None,
) -> int:
    """Upsert :data:`COMMAND_DEFINITIONS` and return how many Discord accepted."""
    if not token:
        raise ConfigurationError("DISCORD_BOT_TOKEN environment variable is not set.")
    client = discord.Client(intents=discord.Intents.none())
    try:
        try:
            await client.login(token)
        except discord.LoginFailure as e:
            raise AuthenticationRejected("Discord rejected the bot token.") from e
        app_id = int(application_id) if application_id else client.application_id
        logger.info("Started refreshing %d application (/) commands.", len(COMMAND_DEFINITIONS))
        if guild_id:
            logger.info("Deploying commands to guild ID: %s", guild_id)
            data = await client.http.bulk_upsert_guild_commands(
                app_id, int(guild_id), payload=COMMAND_DEFINITIONS
            )
        else:
            logger.info("Deploying commands globally.")
            data = await client.http.bulk_upsert_global_commands(
                app_id, payload=COMMAND_DEFINITIONS
            )
    finally:
        await client.close()
    logger.info("Successfully reloaded %d application (/) commands.", len(data))
    return len(data)
