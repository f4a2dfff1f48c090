"""
ZBØTS entrypoint.

    zbots serve            run the admin HTTP service and the Discord bot(s)
    zbots sync-commands    register the slash commands with Discord
    zbots generate-key     print a new random ENCRYPTION_KEY
    zbots rotate-key       re-encrypt every stored secret with a new key
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

import asyncpg
from aiohttp import web
from dotenv import load_dotenv

from .bot import CommandRouter, SessionSupervisor, TenantBot
from .bot.commands import sync_commands
from .bot.supervisor import DEFAULT_LOGIN_TIMEOUT, login_client
from .conf import DiscordSettings, Settings
from .exceptions import ConfigurationError, ZbotsError
from .llm import ChatClient
from .vault import (
    CredentialService,
    SecretCodec,
    SecretStore,
    generate_master_key,
    parse_master_key,
    rotate_master_key,
)
from .web import create_app

logger = logging.getLogger("zbots")


def setup_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "DEBUG" if os.environ.get("DEBUG") else "INFO")
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # discord.py is chatty at INFO
    logging.getLogger("discord").setLevel(logging.WARNING)


async def start_shared_bot(
    token: str,
    credentials: CredentialService,
    chat: ChatClient,
    reconnect: bool,
    login_timeout: float = DEFAULT_LOGIN_TIMEOUT,
) -> tuple[TenantBot, list[asyncio.Task]] | None:
    """Log in the shared bot; tenants are resolved per guild.

    Returns ``None`` (with the client closed) when the login fails, so the
    HTTP service keeps running without the shared bot.
    """
    bot = TenantBot(tenant_id=None)
    logger.info("Attempting to log in ZBOT CHT1...")
    failure = await login_client(bot, token, login_timeout, "the shared bot")
    if failure is not None:
        logger.error("Shared bot not started (%s); check DISCORD_BOT_TOKEN", failure.value)
        return None
    router = CommandRouter(credentials, chat)
    tasks = [
        asyncio.create_task(bot.connect(reconnect=reconnect), name="zbots-shared-bot"),
        asyncio.create_task(router.consume(bot.events), name="zbots-shared-router"),
    ]
    return bot, tasks


async def serve(settings: Settings) -> None:
    pool = await asyncpg.create_pool(settings.require_database())
    store = SecretStore(pool)
    await store.create_schema()
    credentials = CredentialService(SecretCodec(settings.master_key), store)
    chat = ChatClient(settings.groq_base_url, settings.llm_model, settings.system_prompt)
    supervisor = SessionSupervisor(
        credentials,
        router_factory=lambda tenant_id: CommandRouter(credentials, chat, tenant_id=tenant_id),
        login_timeout=settings.bot_login_timeout,
        reconnect=settings.bot_reconnect,
    )

    runner = web.AppRunner(create_app(credentials, supervisor, settings.admin_api_token))
    await runner.setup()
    await web.TCPSite(runner, settings.host, settings.port).start()
    logger.info("ZBØTS Backend listening on port %d", settings.port)
    logger.info("Healthcheck available at http://localhost:%d/healthcheck", settings.port)

    shared: TenantBot | None = None
    tasks: list[asyncio.Task] = []
    try:
        if settings.discord_bot_token:
            started = await start_shared_bot(
                settings.discord_bot_token,
                credentials,
                chat,
                settings.bot_reconnect,
                settings.bot_login_timeout,
            )
            if started is not None:
                shared, tasks = started
        if settings.tenant_bots:
            await supervisor.start_all()
        await asyncio.Event().wait()
    finally:
        # HTTP first, so no restart request lands after the supervisor shutdown
        await runner.cleanup()
        await supervisor.shutdown()
        if shared is not None:
            await shared.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await pool.close()


async def rotate(settings: Settings, new_key: str, batch_size: int) -> dict:
    new_codec = SecretCodec(parse_master_key(new_key))
    pool = await asyncpg.create_pool(settings.require_database())
    try:
        return await rotate_master_key(
            SecretStore(pool), SecretCodec(settings.master_key), new_codec, batch_size
        )
    finally:
        await pool.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zbots", description="ZBØTS backend")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("serve", help="run the HTTP service and Discord bots")
    sub.add_parser("sync-commands", help="register slash commands with Discord")
    sub.add_parser("generate-key", help="print a new random ENCRYPTION_KEY")
    rot = sub.add_parser("rotate-key", help="re-encrypt stored secrets with a new key")
    rot.add_argument(
        "--new-key",
        default=os.environ.get("NEW_ENCRYPTION_KEY"),
        help="new 64-char hex key (default: $NEW_ENCRYPTION_KEY)",
    )
    rot.add_argument("--batch-size", type=int, default=100)
    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    setup_logging()
    args = build_parser().parse_args(argv)
    command = args.command or "serve"

    if command == "generate-key":
        print(generate_master_key())
        return

    try:
        if command == "sync-commands":
            discord_settings = DiscordSettings.from_env()
            asyncio.run(
                sync_commands(
                    discord_settings.discord_bot_token or "",
                    discord_settings.discord_client_id,
                    discord_settings.discord_guild_id,
                )
            )
            return
        settings = Settings.from_env()
        if command == "serve":
            asyncio.run(serve(settings))
        elif command == "rotate-key":
            stats = asyncio.run(rotate(settings, args.new_key, args.batch_size))
            print(stats)
    except ConfigurationError as err:
        logger.error("Refusing to start: %s", err)
        sys.exit(1)
    except ZbotsError as err:
        logger.error("%s failed: %s", command, err)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
