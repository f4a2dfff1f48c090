"""
Discord platform client.

``TenantBot`` is a thin ``discord.Client`` that turns gateway callbacks
(slash-command interactions and bot mentions) into :class:`InboundEvent`
objects on an ``asyncio.Queue``. The queue is consumed by a
:class:`~zbots.bot.router.CommandRouter`, so arrival order is decoupled from
processing order.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import discord

logger = logging.getLogger("zbots.bot")

ACTIVITY_NAME = "ZBØTS Online!"


class EventKind(Enum):
    COMMAND = "command"
    MENTION = "mention"


class Responder(Protocol):
    async def defer(self, ephemeral: bool = False) -> None: ...

    async def send(self, content: str, ephemeral: bool = False) -> None: ...


@dataclass
class InboundEvent:
    kind: EventKind
    name: str
    user_id: str
    guild_id: str | None
    responder: Responder
    options: dict[str, Any] = field(default_factory=dict)
    content: str = ""
    is_admin: bool = False


class InteractionResponder:
    """Replies to a slash-command interaction (initial response or follow-up)."""

    def __init__(self, interaction: discord.Interaction) -> None:
        self.interaction = interaction

    async def defer(self, ephemeral: bool = False) -> None:
        if not self.interaction.response.is_done():
            await self.interaction.response.defer(ephemeral=ephemeral, thinking=True)

    async def send(self, content: str, ephemeral: bool = False) -> None:
        if self.interaction.response.is_done():
            await self.interaction.followup.send(content, ephemeral=ephemeral)
        else:
            await self.interaction.response.send_message(content, ephemeral=ephemeral)


class MessageResponder:
    """Replies to a message that mentioned the bot. Ephemeral is not available."""

    def __init__(self, message: discord.Message) -> None:
        self.message = message

    async def defer(self, ephemeral: bool = False) -> None:
        await self.message.channel.typing()

    async def send(self, content: str, ephemeral: bool = False) -> None:
        await self.message.reply(content)


def strip_mention(content: str, user_id: int) -> str:
    return content.replace(f"<@{user_id}>", "").replace(f"<@!{user_id}>", "").strip()


class TenantBot(discord.Client):
    """
    Discord client for one bot token.

    Parameters
    ----------
    tenant_id:
        Tenant that owns the token, or ``None`` for the shared bot (tenants
        are then resolved per guild by the router).
    events:
        Queue receiving :class:`InboundEvent` objects; created if omitted.
    """

    def __init__(self, tenant_id: str | None = None, events: asyncio.Queue | None = None) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.dm_messages = True
        activity = discord.Activity(type=discord.ActivityType.watching, name=ACTIVITY_NAME)
        super().__init__(intents=intents, activity=activity)
        self.tenant_id = tenant_id
        self.events: asyncio.Queue = events if events is not None else asyncio.Queue()

    @property
    def label(self) -> str:
        return self.tenant_id or "shared"

    async def on_ready(self) -> None:
        logger.info("Discord bot ready for tenant=%s: logged in as %s", self.label, self.user)

    async def on_message(self, message: discord.Message) -> None:
        # Ignore messages from bots (including ourselves)
        if message.author.bot or self.user is None:
            return
        mentioned = any(u.id == self.user.id for u in message.mentions)
        is_dm = isinstance(message.channel, discord.DMChannel)
        if not (mentioned or is_dm):
            return
        await self.events.put(
            InboundEvent(
                kind=EventKind.MENTION,
                name="mention",
                user_id=str(message.author.id),
                guild_id=str(message.guild.id) if message.guild else None,
                responder=MessageResponder(message),
                content=strip_mention(message.content, self.user.id),
            )
        )

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.application_command:
            return
        data: dict[str, Any] = interaction.data or {}  # type: ignore[assignment]
        options = {o["name"]: o.get("value") for o in data.get("options", [])}
        await self.events.put(
            InboundEvent(
                kind=EventKind.COMMAND,
                name=str(data.get("name", "")),
                user_id=str(interaction.user.id),
                guild_id=str(interaction.guild_id) if interaction.guild_id else None,
                responder=InteractionResponder(interaction),
                options=options,
                is_admin=interaction.permissions.administrator,
            )
        )

    async def on_disconnect(self) -> None:
        logger.warning("Discord client for tenant=%s disconnected", self.label)

    async def on_error(self, event_method: str, /, *args: Any, **kwargs: Any) -> None:
        logger.exception("Discord client error in %s for tenant=%s", event_method, self.label)
