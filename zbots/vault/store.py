"""
SecretStore — Persistence of ciphertext tokens keyed by tenant and secret name.

Each ``(tenant_id, secret_name)`` pair holds at most one record; writes are
upserts (last write wins) and deletes report whether a record existed, so
every operation is safe to retry.

Security Note:
    Only ciphertext tokens reach this layer. Never log their values; log
    tenant ids and secret names only.
"""
import asyncio
import logging
from enum import Enum
from typing import Any

import asyncpg

from ..exceptions import TransientIOError

logger = logging.getLogger("zbots.vault")


class SecretName(str, Enum):
    """Names of the secrets a tenant can hold."""

    LLM_API_KEY = "llmApiKey"
    PLATFORM_BOT_TOKEN = "platformBotToken"


# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS tenant_secrets (
    tenant_id TEXT NOT NULL,
    secret_name TEXT NOT NULL,
    ciphertext TEXT NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (tenant_id, secret_name)
)
"""

_UPSERT_SECRET = """
INSERT INTO tenant_secrets (tenant_id, secret_name, ciphertext, updated_at)
VALUES ($1, $2, $3, NOW())
ON CONFLICT (tenant_id, secret_name)
DO UPDATE SET ciphertext = EXCLUDED.ciphertext,
             updated_at = NOW()
"""

_SELECT_SECRET = """
SELECT ciphertext
FROM tenant_secrets
WHERE tenant_id = $1 AND secret_name = $2
"""

_DELETE_SECRET = """
DELETE FROM tenant_secrets
WHERE tenant_id = $1 AND secret_name = $2
RETURNING tenant_id
"""

_SELECT_TENANTS = """
SELECT tenant_id
FROM tenant_secrets
WHERE secret_name = $1
"""

_SELECT_BATCH = """
SELECT tenant_id, secret_name, ciphertext
FROM tenant_secrets
ORDER BY tenant_id, secret_name
LIMIT $1
OFFSET $2
"""

_DRIVER_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


def _name(secret_name: SecretName | str) -> str:
    return SecretName(secret_name).value


class SecretStore:
    """Keyed ciphertext records on top of an asyncpg-compatible pool.

    Args:
        db_pool: Pool exposing ``acquire()`` as an async context manager whose
            connections provide ``execute``, ``fetch``, ``fetchval``.
    """

    def __init__(self, db_pool: Any):
        self._db = db_pool

    async def create_schema(self) -> None:
        """Create the secrets table if it does not exist."""
        try:
            async with self._db.acquire() as conn:
                await conn.execute(_CREATE_TABLE)
        except _DRIVER_ERRORS as err:
            raise TransientIOError(f"Failed to create secrets table: {err}") from err

    async def put(
        self, tenant_id: str, secret_name: SecretName | str, ciphertext: str
    ) -> None:
        """Upsert the ciphertext for a tenant's secret."""
        name = _name(secret_name)
        try:
            async with self._db.acquire() as conn:
                await conn.execute(_UPSERT_SECRET, tenant_id, name, ciphertext)
        except _DRIVER_ERRORS as err:
            logger.error(
                "Error storing %s for tenant=%s: %s", name, tenant_id, err
            )
            raise TransientIOError(f"Failed to store {name}.") from err
        logger.debug("Secret stored: tenant=%s name=%s", tenant_id, name)

    async def get(self, tenant_id: str, secret_name: SecretName | str) -> str | None:
        """Return the ciphertext for a tenant's secret, or None if absent."""
        name = _name(secret_name)
        try:
            async with self._db.acquire() as conn:
                return await conn.fetchval(_SELECT_SECRET, tenant_id, name)
        except _DRIVER_ERRORS as err:
            logger.error(
                "Error retrieving %s for tenant=%s: %s", name, tenant_id, err
            )
            raise TransientIOError(f"Failed to retrieve {name}.") from err

    async def delete(self, tenant_id: str, secret_name: SecretName | str) -> bool:
        """Delete a tenant's secret.

        Returns:
            True if a record existed, False otherwise.
        """
        name = _name(secret_name)
        try:
            async with self._db.acquire() as conn:
                deleted = await conn.fetchval(_DELETE_SECRET, tenant_id, name)
        except _DRIVER_ERRORS as err:
            logger.error(
                "Error deleting %s for tenant=%s: %s", name, tenant_id, err
            )
            raise TransientIOError(f"Failed to delete {name}.") from err
        logger.debug(
            "Secret delete: tenant=%s name=%s existed=%s",
            tenant_id, name, deleted is not None,
        )
        return deleted is not None

    async def list_tenants_with_secret(self, secret_name: SecretName | str) -> list[str]:
        """Return every tenant id holding the given secret (no ordering)."""
        name = _name(secret_name)
        try:
            async with self._db.acquire() as conn:
                rows = await conn.fetch(_SELECT_TENANTS, name)
        except _DRIVER_ERRORS as err:
            raise TransientIOError(f"Failed to list tenants with {name}.") from err
        return [row["tenant_id"] for row in rows]

    async def fetch_batch(self, limit: int, offset: int) -> list[Any]:
        """Return a stable page of full records (tenant_id, secret_name, ciphertext)."""
        try:
            async with self._db.acquire() as conn:
                return await conn.fetch(_SELECT_BATCH, limit, offset)
        except _DRIVER_ERRORS as err:
            raise TransientIOError(f"Failed to read secrets batch: {err}") from err
