"""
CommandRouter — dispatches inbound Discord events to handlers.

Slash commands are looked up in a table keyed by :class:`CommandName`; the
table must cover every member of the enum. Mentions go to the chat path.

Admin-facing failures get short actionable guidance ("reset your key");
end-user failures get a generic "try again later". Replies never contain
secret material.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from ..exceptions import (
    AuthenticationRejected,
    ConfigurationError,
    DecryptionError,
    ProviderError,
    TransientIOError,
    ValidationError,
)
from ..llm import ChatClient
from ..vault import CredentialService, SecretName
from .client import EventKind, InboundEvent

logger = logging.getLogger("zbots.bot")

MAX_MESSAGE_LENGTH = 2000
DEFAULT_MAX_CONCURRENCY = 8

MSG_TRY_LATER = "Something went wrong on our side. Please try again later."
MSG_GUILD_ONLY = "This command can only be used inside a server."
MSG_ADMIN_ONLY = "Only server administrators can manage the Groq API key."
MSG_NO_KEY = (
    "No Groq API key is set for this server. "
    "An administrator can add one with `/setkey`."
)
MSG_UNREADABLE_KEY = (
    "The stored Groq API key can no longer be read. "
    "An administrator should set it again with `/setkey`."
)
MSG_PROVIDER_REFUSED = (
    "Groq could not handle this request. "
    "If this keeps happening, ask an administrator to check the bot's model settings."
)
MSG_REJECTED_KEY = (
    "The Groq API key for this server was rejected by Groq. "
    "An administrator should reset it with `/setkey`."
)


class CommandName(str, Enum):
    SETKEY = "setkey"
    REMOVEKEY = "removekey"
    CHATBOT = "chatbot"


Handler = Callable[[InboundEvent], Awaitable[None]]


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into Discord-sized chunks, preferring line breaks."""
    chunks: list[str] = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text or not chunks:
        chunks.append(text)
    return chunks


class CommandRouter:
    """Routes events for one Discord connection.

    Args:
        credentials: Credential service used for key management and lookup.
        chat: Chat-completion client.
        tenant_id: Fixed tenant for a supervised tenant bot; ``None`` for the
            shared bot, where the tenant is the event's guild.
        max_concurrency: Events processed at once for this connection.
    """

    def __init__(
        self,
        credentials: CredentialService,
        chat: ChatClient,
        tenant_id: str | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        self.credentials = credentials
        self.chat = chat
        self.tenant_id = tenant_id
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task] = set()
        self._handlers: dict[CommandName, Handler] = {
            CommandName.SETKEY: self.handle_setkey,
            CommandName.REMOVEKEY: self.handle_removekey,
            CommandName.CHATBOT: self.handle_chatbot,
        }
        missing = set(CommandName) - set(self._handlers)
        if missing:
            raise ConfigurationError(
                f"No handler registered for: {sorted(m.value for m in missing)}"
            )

    def resolve_tenant(self, event: InboundEvent) -> str | None:
        return self.tenant_id or event.guild_id

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    async def consume(self, queue: asyncio.Queue) -> None:
        """Process events from ``queue`` until cancelled."""
        try:
            while True:
                event = await queue.get()
                await self._semaphore.acquire()
                task = asyncio.create_task(self._process(event, queue))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            for task in list(self._tasks):
                task.cancel()

    async def _process(self, event: InboundEvent, queue: asyncio.Queue) -> None:
        try:
            await self.dispatch(event)
        except Exception:
            logger.exception(
                "Error handling %s for tenant=%s", event.name, self.resolve_tenant(event)
            )
            try:
                await event.responder.send(MSG_TRY_LATER, ephemeral=True)
            except Exception as err:  # noqa: BLE001
                logger.warning("Could not send error reply: %s", err)
        finally:
            self._semaphore.release()
            queue.task_done()

    async def dispatch(self, event: InboundEvent) -> None:
        if event.kind is EventKind.MENTION:
            await self.handle_mention(event)
            return
        try:
            name = CommandName(event.name)
        except ValueError:
            await event.responder.send("Unknown command.", ephemeral=True)
            return
        await self._handlers[name](event)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _admin_tenant(self, event: InboundEvent) -> str | None:
        tenant_id = self.resolve_tenant(event)
        if tenant_id is None:
            await event.responder.send(MSG_GUILD_ONLY, ephemeral=True)
            return None
        if not event.is_admin:
            await event.responder.send(MSG_ADMIN_ONLY, ephemeral=True)
            return None
        return tenant_id

    async def handle_setkey(self, event: InboundEvent) -> None:
        tenant_id = await self._admin_tenant(event)
        if tenant_id is None:
            return
        key = str(event.options.get("key") or "").strip()
        try:
            await self.credentials.set_credential(tenant_id, SecretName.LLM_API_KEY, key)
        except ValidationError as err:
            await event.responder.send(str(err), ephemeral=True)
            return
        except TransientIOError:
            await event.responder.send(
                "There was an error storing the key. Please try again later.", ephemeral=True
            )
            return
        logger.info("Groq API key set for tenant=%s by user=%s", tenant_id, event.user_id)
        await event.responder.send(
            "The Groq API key has been securely stored! AI features are now enabled.",
            ephemeral=True,
        )

    async def handle_removekey(self, event: InboundEvent) -> None:
        tenant_id = await self._admin_tenant(event)
        if tenant_id is None:
            return
        try:
            removed = await self.credentials.remove_credential(tenant_id, SecretName.LLM_API_KEY)
        except TransientIOError:
            await event.responder.send(
                "There was an error removing the key. Please try again later.", ephemeral=True
            )
            return
        if removed:
            logger.info("Groq API key removed for tenant=%s by user=%s", tenant_id, event.user_id)
            await event.responder.send(
                "The Groq API key has been removed. AI features are now disabled.",
                ephemeral=True,
            )
        else:
            await event.responder.send("No Groq API key was found to remove.", ephemeral=True)

    async def handle_chatbot(self, event: InboundEvent) -> None:
        prompt = str(event.options.get("prompt") or "").strip()
        if not prompt:
            await event.responder.send("Please provide a prompt for the AI.", ephemeral=True)
            return
        await event.responder.defer()
        await self._reply(event, await self.answer(self.resolve_tenant(event), prompt))

    async def handle_mention(self, event: InboundEvent) -> None:
        text = event.content
        if text.lower() == "ping":
            await event.responder.send("Pong!")
        elif not text:
            await event.responder.send(f"Hello there, <@{event.user_id}>! How can I assist you?")
        else:
            await event.responder.defer()
            await self._reply(event, await self.answer(self.resolve_tenant(event), text))

    async def _reply(self, event: InboundEvent, text: str) -> None:
        for chunk in split_message(text):
            await event.responder.send(chunk)

    async def answer(self, tenant_id: str | None, prompt: str) -> str:
        """Run the chat path for a tenant and return the text to reply with."""
        if tenant_id is None:
            return MSG_GUILD_ONLY
        try:
            api_key = await self.credentials.get_credential_plaintext(
                tenant_id, SecretName.LLM_API_KEY
            )
        except DecryptionError:
            logger.warning("Unreadable Groq API key for tenant=%s", tenant_id)
            return MSG_UNREADABLE_KEY
        except TransientIOError:
            return MSG_TRY_LATER
        if api_key is None:
            return MSG_NO_KEY
        try:
            reply = await self.chat.complete(api_key, prompt)
        except AuthenticationRejected:
            logger.warning("Groq rejected the API key for tenant=%s", tenant_id)
            return MSG_REJECTED_KEY
        except TransientIOError:
            return MSG_TRY_LATER
        except ProviderError:
            return MSG_PROVIDER_REFUSED
        return reply or "The AI returned an empty response."
