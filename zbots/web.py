"""
Admin HTTP service.

Routes:
    GET    /healthcheck
    GET    /api/bot/active
    POST   /api/bot/restart/{tenantId}     200, or 404/400/502/503 with a reason
    POST   /api/bot/stop/{tenantId}
    POST   /api/{secret}                 body: {"tenantId", "plaintext"}
    GET    /api/{secret}/{tenantId}
    DELETE /api/{secret}/{tenantId}

``{secret}`` is a :class:`~zbots.vault.SecretName` value (``llmApiKey`` or
``platformBotToken``). When an admin token is configured every ``/api/``
route requires ``Authorization: Bearer <token>``.

Security Note:
    Never log request bodies; they carry plaintext secrets.
"""
import hmac
import logging
from typing import Any

import orjson
from aiohttp import web

from .bot.supervisor import SessionSupervisor, StartFailure
from .exceptions import DecryptionError, ValidationError, ZbotsError
from .vault import CredentialService, SecretName

logger = logging.getLogger("zbots.web")

CREDENTIALS = web.AppKey("credentials", CredentialService)
SUPERVISOR = web.AppKey("supervisor", SessionSupervisor)
ADMIN_TOKEN = web.AppKey("admin_token", str)


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.Response(
        body=orjson.dumps(data),
        status=status,
        content_type="application/json",
    )


def _error(message: str, status: int) -> web.Response:
    return json_response({"error": message}, status=status)


def _secret_name(request: web.Request) -> SecretName:
    try:
        return SecretName(request.match_info["secret"])
    except ValueError:
        raise web.HTTPNotFound(
            text=orjson.dumps({"error": "Unknown secret"}).decode(),
            content_type="application/json",
        ) from None


@web.middleware
async def auth_middleware(request: web.Request, handler):
    expected = request.app[ADMIN_TOKEN]
    if expected and request.path.startswith("/api/"):
        supplied = request.headers.get("Authorization", "")
        if not hmac.compare_digest(supplied.encode(), f"Bearer {expected}".encode()):
            return _error("Unauthorized", 401)
    return await handler(request)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def healthcheck(request: web.Request) -> web.Response:
    return web.Response(text="ZBØTS Backend is healthy!")


async def set_secret(request: web.Request) -> web.Response:
    name = _secret_name(request)
    try:
        body = orjson.loads(await request.read())
    except orjson.JSONDecodeError:
        return _error("Request body must be JSON", 400)
    if not isinstance(body, dict):
        return _error("Request body must be a JSON object", 400)
    tenant_id = body.get("tenantId")
    plaintext = body.get("plaintext")
    if not isinstance(tenant_id, str) or not tenant_id or not isinstance(plaintext, str) or not plaintext:
        return _error("tenantId and plaintext are required", 400)
    try:
        await request.app[CREDENTIALS].set_credential(tenant_id, name, plaintext)
    except ValidationError as err:
        return _error(str(err), 400)
    except ZbotsError as err:
        logger.error("Failed to store %s for tenant=%s: %s", name.value, tenant_id, err)
        return _error(f"Failed to store {name.value}", 500)
    return json_response({"tenantId": tenant_id, "secretName": name.value, "stored": True})


async def get_secret(request: web.Request) -> web.Response:
    name = _secret_name(request)
    tenant_id = request.match_info["tenantId"]
    try:
        plaintext = await request.app[CREDENTIALS].get_credential_plaintext(tenant_id, name)
    except DecryptionError:
        logger.warning("Unreadable %s for tenant=%s", name.value, tenant_id)
        return _error(f"Stored {name.value} cannot be decrypted; reset it", 500)
    except ZbotsError as err:
        logger.error("Failed to retrieve %s for tenant=%s: %s", name.value, tenant_id, err)
        return _error(f"Failed to retrieve {name.value}", 500)
    if plaintext is None:
        return _error(f"No {name.value} found for tenant", 404)
    return json_response(
        {"tenantId": tenant_id, "secretName": name.value, "plaintext": plaintext}
    )


async def delete_secret(request: web.Request) -> web.Response:
    name = _secret_name(request)
    tenant_id = request.match_info["tenantId"]
    try:
        removed = await request.app[CREDENTIALS].remove_credential(tenant_id, name)
    except ZbotsError as err:
        logger.error("Failed to delete %s for tenant=%s: %s", name.value, tenant_id, err)
        return _error(f"Failed to delete {name.value}", 500)
    return json_response({"tenantId": tenant_id, "secretName": name.value, "removed": removed})


_START_FAILURES: dict[StartFailure, tuple[int, str]] = {
    StartFailure.NO_TOKEN: (
        404, "No platformBotToken is stored for this tenant; set one first."
    ),
    StartFailure.UNREADABLE_TOKEN: (
        400, "The stored bot token cannot be decrypted; reset the bot token."
    ),
    StartFailure.REJECTED: (
        400, "Discord rejected the bot token; reset the bot token."
    ),
    StartFailure.TIMEOUT: (
        502, "Discord did not answer the login in time; try again later."
    ),
    StartFailure.UNAVAILABLE: (
        502, "Discord or the secret store is unavailable; try again later."
    ),
    StartFailure.SHUTTING_DOWN: (
        503, "The service is shutting down."
    ),
}


async def restart_bot(request: web.Request) -> web.Response:
    tenant_id = request.match_info["tenantId"]
    failure = await request.app[SUPERVISOR].try_start(tenant_id)
    if failure is None:
        return json_response({"tenantId": tenant_id, "running": True})
    status, message = _START_FAILURES[failure]
    return json_response(
        {"tenantId": tenant_id, "running": False, "reason": failure.value, "error": message},
        status=status,
    )


async def stop_bot(request: web.Request) -> web.Response:
    tenant_id = request.match_info["tenantId"]
    stopped = await request.app[SUPERVISOR].stop(tenant_id)
    return json_response({"tenantId": tenant_id, "stopped": stopped})


async def active_bots(request: web.Request) -> web.Response:
    return json_response({"active": request.app[SUPERVISOR].list_active()})


def create_app(
    credentials: CredentialService,
    supervisor: SessionSupervisor,
    admin_token: str | None = None,
) -> web.Application:
    """Build the admin application."""
    app = web.Application(middlewares=[auth_middleware])
    app[CREDENTIALS] = credentials
    app[SUPERVISOR] = supervisor
    app[ADMIN_TOKEN] = admin_token or ""
    # bot routes first: /api/bot/active would otherwise match /api/{secret}/{tenantId}
    app.router.add_get("/healthcheck", healthcheck)
    app.router.add_get("/api/bot/active", active_bots)
    app.router.add_post("/api/bot/restart/{tenantId}", restart_bot)
    app.router.add_post("/api/bot/stop/{tenantId}", stop_bot)
    app.router.add_post("/api/{secret}", set_secret)
    app.router.add_get("/api/{secret}/{tenantId}", get_secret)
    app.router.add_delete("/api/{secret}/{tenantId}", delete_secret)
    return app
