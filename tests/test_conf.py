"""
Tests for Settings loading.
"""
import pytest

from zbots.conf import DEFAULT_GROQ_BASE_URL, DiscordSettings, Settings
from zbots.exceptions import ConfigurationError

from .conftest import MASTER_KEY_HEX


class TestSettings:

    def test_minimal(self):
        settings = Settings.from_env({"ENCRYPTION_KEY": MASTER_KEY_HEX})
        assert settings.master_key == bytes.fromhex(MASTER_KEY_HEX)
        assert settings.port == 3000
        assert settings.tenant_bots is False
        assert settings.bot_reconnect is True
        assert settings.groq_base_url == DEFAULT_GROQ_BASE_URL
        assert settings.discord_bot_token is None

    def test_full(self):
        settings = Settings.from_env({
            "ENCRYPTION_KEY": MASTER_KEY_HEX,
            "DATABASE_URL": "postgresql://localhost/zbots",
            "PORT": "8080",
            "TENANT_BOTS": "true",
            "BOT_RECONNECT": "0",
            "BOT_LOGIN_TIMEOUT": "5",
            "LLM_MODEL": "llama-3.3-70b-versatile",
        })
        assert settings.port == 8080
        assert settings.tenant_bots is True
        assert settings.bot_reconnect is False
        assert settings.bot_login_timeout == 5.0
        assert settings.llm_model == "llama-3.3-70b-versatile"
        assert settings.require_database() == "postgresql://localhost/zbots"

    @pytest.mark.parametrize("key", ["", "abc", "00" * 16, "zz" * 32])
    def test_refuses_bad_master_key(self, key):
        with pytest.raises(ConfigurationError):
            Settings.from_env({"ENCRYPTION_KEY": key})

    def test_missing_master_key(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env({})

    def test_error_hides_values(self):
        bad_key = "ab" * 31
        with pytest.raises(ConfigurationError) as exc:
            Settings.from_env({"ENCRYPTION_KEY": bad_key, "DISCORD_BOT_TOKEN": "tok.en.value"})
        assert bad_key not in str(exc.value)

    def test_invalid_port(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env({"ENCRYPTION_KEY": MASTER_KEY_HEX, "PORT": "99999"})

    def test_database_required_for_serve(self):
        settings = Settings.from_env({"ENCRYPTION_KEY": MASTER_KEY_HEX})
        with pytest.raises(ConfigurationError):
            settings.require_database()

    def test_repr_hides_secrets(self):
        settings = Settings.from_env({
            "ENCRYPTION_KEY": MASTER_KEY_HEX,
            "DISCORD_BOT_TOKEN": "tok.en.value",
        })
        assert MASTER_KEY_HEX not in repr(settings)
        assert "tok.en.value" not in repr(settings)


class TestDiscordSettings:

    def test_does_not_need_master_key(self):
        settings = DiscordSettings.from_env({
            "DISCORD_BOT_TOKEN": "tok.en.value",
            "DISCORD_CLIENT_ID": "111",
        })
        assert settings.discord_bot_token == "tok.en.value"
        assert settings.discord_client_id == "111"
        assert settings.discord_guild_id is None
        assert "tok.en.value" not in repr(settings)
