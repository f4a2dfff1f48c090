"""
Shared fixtures: an in-memory stand-in for the asyncpg pool, a fake Discord
client, and ready-made vault objects.
"""
import asyncio
from contextlib import asynccontextmanager

import aiohttp
import discord
import pytest

from zbots.vault import CredentialService, SecretCodec, SecretStore
from zbots.vault import store as store_mod

MASTER_KEY_HEX = "8f1e3a6c" * 8
OTHER_KEY_HEX = "1b2c3d4e" * 8

GOOD_TOKEN = "MTA0.good-part.signature"
OTHER_GOOD_TOKEN = "MTA1.other-part.signature"
BAD_TOKEN = "MTA2.rejected.signature"
HANGING_TOKEN = "MTA3.hanging.signature"
SLOW_TOKEN = "MTA4.slow.signature"
UNREACHABLE_TOKEN = "MTA5.unreachable.signature"


class FakeConnection:
    """Answers the SQL statements of ``zbots.vault.store`` from a dict."""

    def __init__(self, pool: "FakePool"):
        self.pool = pool

    async def execute(self, sql, *args):
        if sql is store_mod._CREATE_TABLE:
            self.pool.schema_created = True
        elif sql is store_mod._UPSERT_SECRET:
            tenant_id, name, ciphertext = args
            self.pool.rows[(tenant_id, name)] = ciphertext
        else:
            raise AssertionError(f"unexpected statement: {sql}")
        return "OK"

    async def fetchval(self, sql, *args):
        if sql is store_mod._SELECT_SECRET:
            return self.pool.rows.get(args)
        if sql is store_mod._DELETE_SECRET:
            return args[0] if self.pool.rows.pop(args, None) is not None else None
        raise AssertionError(f"unexpected statement: {sql}")

    async def fetch(self, sql, *args):
        if sql is store_mod._SELECT_TENANTS:
            return [{"tenant_id": t} for (t, n) in self.pool.rows if n == args[0]]
        if sql is store_mod._SELECT_BATCH:
            limit, offset = args
            items = sorted(self.pool.rows.items())[offset:offset + limit]
            return [
                {"tenant_id": t, "secret_name": n, "ciphertext": ct}
                for (t, n), ct in items
            ]
        raise AssertionError(f"unexpected statement: {sql}")


class FakePool:
    def __init__(self):
        self.rows: dict[tuple[str, str], str] = {}
        self.schema_created = False
        self.fail: Exception | None = None

    @asynccontextmanager
    async def acquire(self):
        if self.fail is not None:
            raise self.fail
        yield FakeConnection(self)


class FakeClient:
    """Discord client double; behaviour is chosen by the token it receives."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self.events: asyncio.Queue = asyncio.Queue()
        self.token: str | None = None
        self.closed = False
        self.reconnect: bool | None = None
        self._stop = asyncio.Event()
        self._failure: Exception | None = None

    async def login(self, token: str) -> None:
        if token == BAD_TOKEN:
            raise discord.LoginFailure("Improper token has been passed.")
        if token == HANGING_TOKEN:
            await asyncio.sleep(3600)
        if token == SLOW_TOKEN:
            await asyncio.sleep(0.1)
        if token == UNREACHABLE_TOKEN:
            raise aiohttp.ClientConnectionError("Cannot connect to host discord.com:443")
        self.token = token

    async def connect(self, *, reconnect: bool = True) -> None:
        self.reconnect = reconnect
        await self._stop.wait()
        if self._failure is not None:
            raise self._failure

    async def close(self) -> None:
        self.closed = True
        self._stop.set()

    def drop(self, error: Exception | None = None) -> None:
        """End the connection from the remote side."""
        self._failure = error
        self._stop.set()


class ClientRecorder:
    """Client factory that remembers every client it built."""

    def __init__(self):
        self.clients: list[FakeClient] = []

    def __call__(self, tenant_id: str) -> FakeClient:
        client = FakeClient(tenant_id)
        self.clients.append(client)
        return client

    def for_tenant(self, tenant_id: str) -> list[FakeClient]:
        return [c for c in self.clients if c.tenant_id == tenant_id]


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def codec():
    return SecretCodec.from_hex(MASTER_KEY_HEX)


@pytest.fixture
def other_codec():
    return SecretCodec.from_hex(OTHER_KEY_HEX)


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def store(pool):
    return SecretStore(pool)


@pytest.fixture
def credentials(codec, store):
    return CredentialService(codec, store)


@pytest.fixture
def clients():
    return ClientRecorder()
