"""
Tests for the command-line entrypoint and shared bot startup.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from zbots import main as main_mod
from zbots.llm import ChatClient

from .conftest import (
    BAD_TOKEN,
    GOOD_TOKEN,
    HANGING_TOKEN,
    UNREACHABLE_TOKEN,
    wait_until,
)


@pytest.fixture
def chat():
    return AsyncMock(spec=ChatClient)


@pytest.fixture
def clean_env(monkeypatch):
    for var in (
        "ENCRYPTION_KEY", "DATABASE_URL", "DISCORD_BOT_TOKEN",
        "DISCORD_CLIENT_ID", "DISCORD_GUILD_ID",
    ):
        monkeypatch.delenv(var, raising=False)
    with patch.object(main_mod, "load_dotenv"):
        yield monkeypatch


@pytest.mark.asyncio
class TestSharedBot:

    @pytest.mark.parametrize("token", [BAD_TOKEN, UNREACHABLE_TOKEN, HANGING_TOKEN])
    async def test_failed_login_does_not_raise(self, credentials, chat, clients, token):
        with patch.object(main_mod, "TenantBot", clients):
            started = await main_mod.start_shared_bot(
                token, credentials, chat, reconnect=True, login_timeout=0.1
            )
        assert started is None
        assert clients.clients[0].closed is True

    async def test_login_starts_connection_and_router(self, credentials, chat, clients):
        with patch.object(main_mod, "TenantBot", clients):
            started = await main_mod.start_shared_bot(
                GOOD_TOKEN, credentials, chat, reconnect=False, login_timeout=0.1
            )
        bot, tasks = started
        assert bot.token == GOOD_TOKEN
        assert len(tasks) == 2
        await wait_until(lambda: bot.reconnect is False)
        await bot.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        assert bot.reconnect is False


class TestMain:

    def test_sync_commands_without_encryption_key(self, clean_env):
        clean_env.setenv("DISCORD_BOT_TOKEN", GOOD_TOKEN)
        clean_env.setenv("DISCORD_GUILD_ID", "123")
        with patch.object(main_mod, "sync_commands", AsyncMock(return_value=3)) as sync:
            main_mod.main(["sync-commands"])
        sync.assert_awaited_once_with(GOOD_TOKEN, None, "123")

    def test_serve_refuses_without_encryption_key(self, clean_env):
        with patch.object(main_mod, "serve", AsyncMock()) as serve:
            with pytest.raises(SystemExit) as exc:
                main_mod.main(["serve"])
        assert exc.value.code == 1
        serve.assert_not_called()

    def test_generate_key(self, clean_env, capsys):
        main_mod.main(["generate-key"])
        assert len(capsys.readouterr().out.strip()) == 64
