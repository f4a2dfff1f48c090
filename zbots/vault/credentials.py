"""
CredentialService — plaintext-in / plaintext-out access to tenant secrets.

Composes :class:`SecretCodec` and :class:`SecretStore` so that callers never
see ciphertext and storage never sees plaintext.

Authorization is the caller's responsibility: only invoke the mutating
operations after checking the caller administers the tenant.
"""
import logging
import re
from collections.abc import Callable

from ..exceptions import ValidationError
from .crypto import SecretCodec
from .store import SecretName, SecretStore

logger = logging.getLogger("zbots.vault")

LLM_KEY_PREFIX = "gsk_"
LLM_KEY_MIN_LENGTH = 20

_BOT_TOKEN_PATTERN = re.compile(r"^[\w-]+\.[\w-]+\.[\w-]+$")


def validate_llm_api_key(value: str) -> None:
    if not value.startswith(LLM_KEY_PREFIX) or len(value) < LLM_KEY_MIN_LENGTH:
        raise ValidationError(
            "That does not look like a valid Groq API key. "
            f"Groq keys start with `{LLM_KEY_PREFIX}`."
        )


def validate_platform_bot_token(value: str) -> None:
    if not _BOT_TOKEN_PATTERN.match(value):
        raise ValidationError(
            "That does not look like a valid Discord bot token."
        )


_VALIDATORS: dict[SecretName, Callable[[str], None]] = {
    SecretName.LLM_API_KEY: validate_llm_api_key,
    SecretName.PLATFORM_BOT_TOKEN: validate_platform_bot_token,
}


class CredentialService:
    """Encrypted credential lifecycle for tenants."""

    def __init__(self, codec: SecretCodec, store: SecretStore):
        self._codec = codec
        self._store = store

    async def set_credential(
        self, tenant_id: str, secret_name: SecretName | str, plaintext: str
    ) -> None:
        """Validate, encrypt and store a credential.

        Raises:
            ValidationError: If the plaintext fails the format check for
                ``secret_name`` or the tenant id is empty.
            TransientIOError: If the store write fails.
        """
        name = SecretName(secret_name)
        if not tenant_id:
            raise ValidationError("Tenant id cannot be empty")
        _VALIDATORS[name](plaintext)
        await self._store.put(tenant_id, name, self._codec.encrypt(plaintext))
        logger.info("Credential set: tenant=%s name=%s", tenant_id, name.value)

    async def get_credential_plaintext(
        self, tenant_id: str, secret_name: SecretName | str
    ) -> str | None:
        """Fetch and decrypt a credential.

        Returns:
            The plaintext, or None when no credential is configured.

        Raises:
            DecryptionError: If the stored ciphertext cannot be read with the
                current master key (the credential must be reset).
            TransientIOError: If the store read fails.
        """
        name = SecretName(secret_name)
        ciphertext = await self._store.get(tenant_id, name)
        if ciphertext is None:
            logger.debug("No %s found for tenant=%s", name.value, tenant_id)
            return None
        return self._codec.decrypt(ciphertext)

    async def remove_credential(
        self, tenant_id: str, secret_name: SecretName | str
    ) -> bool:
        """Delete a credential; returns whether one existed."""
        name = SecretName(secret_name)
        removed = await self._store.delete(tenant_id, name)
        if removed:
            logger.info("Credential removed: tenant=%s name=%s", tenant_id, name.value)
        return removed

    async def list_tenants_with_credential(
        self, secret_name: SecretName | str
    ) -> list[str]:
        """Tenant ids that currently hold ``secret_name``."""
        return await self._store.list_tenants_with_secret(SecretName(secret_name))
