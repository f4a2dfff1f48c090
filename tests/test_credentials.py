"""
Tests for CredentialService.

Tests cover:
- Plaintext round-trip through encrypted storage
- Absence vs decryption failure
- Idempotent removal
- Format validation per secret name
"""
import pytest

from zbots.exceptions import DecryptionError, ValidationError
from zbots.vault import CredentialService, SecretName, SecretStore

from .conftest import GOOD_TOKEN

LLM_KEY = "gsk_abcdef0123456789ABCDEF"


@pytest.mark.asyncio
class TestCredentialLifecycle:

    async def test_end_to_end(self, credentials):
        await credentials.set_credential("guild1", "llmApiKey", LLM_KEY)
        assert await credentials.get_credential_plaintext("guild1", "llmApiKey") == LLM_KEY
        assert await credentials.remove_credential("guild1", "llmApiKey") is True
        assert await credentials.get_credential_plaintext("guild1", "llmApiKey") is None

    async def test_storage_never_sees_plaintext(self, credentials, pool):
        await credentials.set_credential("guild1", SecretName.LLM_API_KEY, LLM_KEY)
        stored = pool.rows[("guild1", "llmApiKey")]
        assert LLM_KEY not in stored
        assert ":" in stored

    async def test_absent_is_none(self, credentials):
        assert await credentials.get_credential_plaintext("nobody", SecretName.LLM_API_KEY) is None

    async def test_undecryptable_raises(self, other_codec, store, credentials):
        # written under a different master key
        stale = CredentialService(other_codec, store)
        await stale.set_credential("guild1", SecretName.LLM_API_KEY, LLM_KEY)
        with pytest.raises(DecryptionError):
            await credentials.get_credential_plaintext("guild1", SecretName.LLM_API_KEY)

    async def test_remove_twice(self, credentials):
        await credentials.set_credential("guild1", SecretName.LLM_API_KEY, LLM_KEY)
        assert await credentials.remove_credential("guild1", SecretName.LLM_API_KEY) is True
        assert await credentials.remove_credential("guild1", SecretName.LLM_API_KEY) is False

    async def test_last_write_wins(self, credentials):
        await credentials.set_credential("guild1", SecretName.LLM_API_KEY, LLM_KEY)
        await credentials.set_credential("guild1", SecretName.LLM_API_KEY, LLM_KEY + "XYZ")
        assert await credentials.get_credential_plaintext(
            "guild1", SecretName.LLM_API_KEY
        ) == LLM_KEY + "XYZ"

    async def test_list_tenants_with_credential(self, credentials):
        await credentials.set_credential("a", SecretName.PLATFORM_BOT_TOKEN, GOOD_TOKEN)
        await credentials.set_credential("b", SecretName.LLM_API_KEY, LLM_KEY)
        assert await credentials.list_tenants_with_credential(
            SecretName.PLATFORM_BOT_TOKEN
        ) == ["a"]


@pytest.mark.asyncio
class TestValidation:

    @pytest.mark.parametrize("value", [
        "",
        "sk_abcdef0123456789ABCDEF",
        "gsk_short",
    ])
    async def test_invalid_llm_key(self, credentials, pool, value):
        with pytest.raises(ValidationError):
            await credentials.set_credential("guild1", SecretName.LLM_API_KEY, value)
        assert pool.rows == {}

    @pytest.mark.parametrize("value", ["", "not a token", "only.two", "a.b.c d"])
    async def test_invalid_bot_token(self, credentials, value):
        with pytest.raises(ValidationError):
            await credentials.set_credential("t1", SecretName.PLATFORM_BOT_TOKEN, value)

    async def test_valid_bot_token(self, credentials):
        await credentials.set_credential("t1", SecretName.PLATFORM_BOT_TOKEN, GOOD_TOKEN)
        assert await credentials.get_credential_plaintext(
            "t1", SecretName.PLATFORM_BOT_TOKEN
        ) == GOOD_TOKEN

    async def test_empty_tenant(self, credentials):
        with pytest.raises(ValidationError):
            await credentials.set_credential("", SecretName.LLM_API_KEY, LLM_KEY)

    async def test_validation_message_hides_value(self, credentials):
        with pytest.raises(ValidationError) as exc:
            await credentials.set_credential("guild1", SecretName.LLM_API_KEY, "sk-leaky-value-123456")
        assert "leaky" not in str(exc.value)
