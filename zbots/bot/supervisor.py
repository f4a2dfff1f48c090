"""
SessionSupervisor — owns the live per-tenant Discord connections.

Per tenant: ``STOPPED → STARTING → RUNNING → STOPPED``; a failed login goes
``STARTING → STOPPED``. There is at most one live connection per tenant:
``start`` on a running tenant closes the old connection before opening the
new one. Operations on one tenant are serialized in issue order by a
per-tenant lock; different tenants never wait on each other.

Reconnects after transient gateway drops are handled inside the Discord
client (``reconnect`` flag). When a connection ends for good (e.g. the token
was revoked) the entry is removed and the tenant is STOPPED; it is not
restarted automatically.

After :meth:`SessionSupervisor.shutdown` the supervisor refuses new starts,
and starts already in flight are stopped as soon as they finish.

Security Note:
    Bot tokens are decrypted only for the login call. Never log them.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import aiohttp
import discord

from ..exceptions import AuthenticationRejected, DecryptionError, TransientIOError
from ..vault import CredentialService, SecretName
from .client import TenantBot
from .router import CommandRouter

logger = logging.getLogger("zbots.bot")

DEFAULT_LOGIN_TIMEOUT = 30.0


class SessionState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class StartFailure(str, Enum):
    """Why a session did not reach RUNNING."""

    NO_TOKEN = "no_token"
    UNREADABLE_TOKEN = "unreadable_token"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    SHUTTING_DOWN = "shutting_down"


class PlatformClient(Protocol):
    """What the supervisor needs from a Discord client."""

    events: asyncio.Queue

    async def login(self, token: str) -> None: ...

    async def connect(self, *, reconnect: bool = True) -> None: ...

    async def close(self) -> None: ...


ClientFactory = Callable[[str], PlatformClient]
RouterFactory = Callable[[str], CommandRouter]


@dataclass
class LiveSession:
    tenant_id: str
    client: PlatformClient
    connect_task: asyncio.Task
    consumer_task: asyncio.Task | None = None
    closing: bool = False

    def tasks(self) -> list[asyncio.Task]:
        return [t for t in (self.connect_task, self.consumer_task) if t is not None]


def _default_client_factory(tenant_id: str) -> PlatformClient:
    return TenantBot(tenant_id=tenant_id)


async def close_client(client: PlatformClient, label: str) -> None:
    try:
        await client.close()
    except Exception as err:  # noqa: BLE001
        logger.warning("Error closing client for %s: %s", label, err)


async def login_client(
    client: PlatformClient, token: str, timeout: float, label: str
) -> StartFailure | None:
    """Log ``client`` in, bounded by ``timeout`` seconds.

    On failure the client is closed and the reason is returned;
    ``None`` means the client is logged in and ready to connect.
    """
    try:
        await asyncio.wait_for(client.login(token), timeout=timeout)
        return None
    except (discord.LoginFailure, AuthenticationRejected):
        logger.error("Invalid Discord bot token for %s", label)
        failure = StartFailure.REJECTED
    except asyncio.TimeoutError:
        logger.error("Discord login timed out after %.1fs for %s", timeout, label)
        failure = StartFailure.TIMEOUT
    except (discord.HTTPException, aiohttp.ClientError, OSError, TransientIOError) as err:
        logger.error("Failed to log in to Discord for %s: %s", label, err)
        failure = StartFailure.UNAVAILABLE
    await close_client(client, label)
    return failure


class SessionSupervisor:
    """Starts, restarts and stops one Discord connection per tenant.

    Args:
        credentials: Source of the decrypted platform bot tokens.
        client_factory: Builds an unconnected client for a tenant.
        router_factory: Builds the router consuming a tenant's events;
            when omitted, events are left on the client's queue.
        login_timeout: Seconds allowed for a login before it counts as
            rejected.
        reconnect: Let the client reconnect after transient gateway drops.
    """

    def __init__(
        self,
        credentials: CredentialService,
        client_factory: ClientFactory | None = None,
        router_factory: RouterFactory | None = None,
        login_timeout: float = DEFAULT_LOGIN_TIMEOUT,
        reconnect: bool = True,
    ):
        self._credentials = credentials
        self._client_factory = client_factory or _default_client_factory
        self._router_factory = router_factory
        self._login_timeout = login_timeout
        self._reconnect = reconnect
        self._sessions: dict[str, LiveSession] = {}
        self._starting: set[str] = set()
        # a tenant's lock lives only while someone holds or waits for it
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self._background: set[asyncio.Task] = set()
        self._closed = False

    @asynccontextmanager
    async def _locked(self, tenant_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        self._lock_users[tenant_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[tenant_id] -= 1
            if self._lock_users[tenant_id] <= 0:
                del self._lock_users[tenant_id]
                self._locks.pop(tenant_id, None)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def state(self, tenant_id: str) -> SessionState:
        if tenant_id in self._sessions:
            return SessionState.RUNNING
        if tenant_id in self._starting:
            return SessionState.STARTING
        return SessionState.STOPPED

    def list_active(self) -> list[str]:
        """Snapshot of tenant ids with a RUNNING session."""
        return list(self._sessions)

    async def start(self, tenant_id: str) -> bool:
        """Start (or restart) the bot session for a tenant.

        Returns:
            True if the session is RUNNING, False if no token is stored,
            the token cannot be read, or Discord rejected the login.
        """
        return await self.try_start(tenant_id) is None

    async def try_start(self, tenant_id: str) -> StartFailure | None:
        """Like :meth:`start`, but report why the session is not running.

        Returns:
            ``None`` when the session is RUNNING, otherwise the reason.
        """
        async with self._locked(tenant_id):
            if self._closed:
                logger.warning(
                    "Refusing to start bot for tenant=%s: supervisor is shut down", tenant_id
                )
                return StartFailure.SHUTTING_DOWN
            self._starting.add(tenant_id)
            try:
                return await self._start(tenant_id)
            finally:
                self._starting.discard(tenant_id)

    async def stop(self, tenant_id: str) -> bool:
        """Stop a tenant's session; returns whether one was running."""
        async with self._locked(tenant_id):
            return await self._stop(tenant_id)

    async def start_all(self) -> None:
        """Start a session for every tenant with a stored bot token.

        One tenant's failure never prevents the others from starting.
        """
        logger.info("Starting all tenant bots from the secret store...")
        tenants = await self._credentials.list_tenants_with_credential(
            SecretName.PLATFORM_BOT_TOKEN
        )
        results = await asyncio.gather(
            *(self.start(tenant_id) for tenant_id in tenants),
            return_exceptions=True,
        )
        for tenant_id, result in zip(tenants, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error starting bot for tenant=%s: %r", tenant_id, result
                )
        logger.info(
            "Finished attempting to start %d tenant bots (%d running)",
            len(tenants), len(self._sessions),
        )

    async def shutdown(self) -> None:
        """Stop every live session and refuse new starts (process teardown).

        Tenants with a start in flight are stopped once that start
        releases the tenant lock.
        """
        self._closed = True
        tenants = set(self._sessions) | set(self._locks)
        await asyncio.gather(*(self.stop(t) for t in tenants))
        for task in list(self._background):
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals (caller holds the tenant lock)
    # ------------------------------------------------------------------

    async def _start(self, tenant_id: str) -> StartFailure | None:
        logger.info("Attempting to initialize bot for tenant=%s", tenant_id)
        if tenant_id in self._sessions:
            logger.info("Destroying existing client for tenant=%s", tenant_id)
            await self._stop(tenant_id)

        try:
            token = await self._credentials.get_credential_plaintext(
                tenant_id, SecretName.PLATFORM_BOT_TOKEN
            )
        except DecryptionError as err:
            logger.error("Cannot read bot token for tenant=%s: %s", tenant_id, err)
            return StartFailure.UNREADABLE_TOKEN
        except TransientIOError as err:
            logger.error("Cannot read bot token for tenant=%s: %s", tenant_id, err)
            return StartFailure.UNAVAILABLE
        if token is None:
            logger.warning(
                "No Discord bot token found for tenant=%s. Cannot initialize bot.", tenant_id
            )
            return StartFailure.NO_TOKEN

        client = self._client_factory(tenant_id)
        failure = await login_client(
            client, token, self._login_timeout, f"tenant={tenant_id}"
        )
        if failure is not None:
            return failure

        connect_task = asyncio.create_task(
            client.connect(reconnect=self._reconnect),
            name=f"zbots-session-{tenant_id}",
        )
        session = LiveSession(tenant_id=tenant_id, client=client, connect_task=connect_task)
        if self._router_factory is not None:
            router = self._router_factory(tenant_id)
            session.consumer_task = asyncio.create_task(
                router.consume(client.events), name=f"zbots-router-{tenant_id}",
            )
        self._sessions[tenant_id] = session
        connect_task.add_done_callback(
            lambda task: self._on_connection_closed(session, task)
        )
        logger.info("Bot session running for tenant=%s", tenant_id)
        return None

    async def _stop(self, tenant_id: str) -> bool:
        session = self._sessions.pop(tenant_id, None)
        if session is None:
            logger.info("No active client found for tenant=%s to stop.", tenant_id)
            return False
        logger.info("Stopping client for tenant=%s", tenant_id)
        session.closing = True
        await close_client(session.client, f"tenant={tenant_id}")
        for task in session.tasks():
            if not task.done():
                task.cancel()
        await asyncio.gather(*session.tasks(), return_exceptions=True)
        return True

    def _on_connection_closed(self, session: LiveSession, task: asyncio.Task) -> None:
        if session.closing or task.cancelled():
            return
        err: Any = task.exception()
        if err is not None:
            logger.error(
                "Discord connection for tenant=%s failed: %r", session.tenant_id, err
            )
        else:
            logger.warning("Discord connection for tenant=%s ended", session.tenant_id)
        forget = asyncio.create_task(self._forget(session))
        self._background.add(forget)
        forget.add_done_callback(self._background.discard)

    async def _forget(self, session: LiveSession) -> None:
        async with self._locked(session.tenant_id):
            if self._sessions.get(session.tenant_id) is not session:
                return
            await self._stop(session.tenant_id)
