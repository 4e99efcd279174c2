"""
AI Relay — Stateless forwarding proxy for providers that block browser CORS.

The caller posts ``{"provider", "apiKey", "body"}`` to ``/ai/proxy``; the
relay forwards ``body`` to the provider with the key in the provider's auth
header and returns the upstream status and body unchanged.

Security Note:
    The API key exists in memory only for the duration of one request. It is
    never logged, stored, or echoed back in an error body.
"""
import asyncio
import logging
from typing import Any, Optional

import aiohttp
import orjson
from aiohttp import web

from .categorization.providers import ANTHROPIC_URL, ANTHROPIC_VERSION
from .models import AiProvider
from .transport import client_session, json_dumps

logger = logging.getLogger("ledger_vault.relay")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

RELAY_ENDPOINTS: dict[str, str] = {
    AiProvider.ANTHROPIC.value: ANTHROPIC_URL,
}

ENDPOINTS_KEY = web.AppKey("endpoints", dict)
TIMEOUT_KEY = web.AppKey("timeout", float)


def _error(status: int, message: str) -> web.Response:
    return web.json_response(
        {"error": message}, status=status, headers=CORS_HEADERS, dumps=json_dumps,
    )


def provider_headers(provider: str, api_key: str) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if provider == AiProvider.ANTHROPIC.value:
        headers["x-api-key"] = api_key
        headers["anthropic-version"] = ANTHROPIC_VERSION
    return headers


async def preflight(request: web.Request) -> web.Response:
    return web.Response(status=204, headers=CORS_HEADERS)


async def proxy(request: web.Request) -> web.Response:
    try:
        payload: Any = orjson.loads(await request.read())
    except orjson.JSONDecodeError:
        return _error(400, "Invalid JSON body")
    if not isinstance(payload, dict):
        return _error(400, "Invalid JSON body")

    provider = payload.get("provider")
    api_key = payload.get("apiKey")
    body = payload.get("body")
    if not provider or not api_key or not body:
        return _error(400, "Missing required fields: provider, apiKey, body")

    endpoint = request.app[ENDPOINTS_KEY].get(provider)
    if endpoint is None:
        return _error(400, f"Unsupported provider: {provider}")

    try:
        async with client_session(request.app[TIMEOUT_KEY]) as session:
            async with session.post(
                endpoint,
                data=orjson.dumps(body),
                headers=provider_headers(provider, api_key),
            ) as upstream:
                content = await upstream.read()
                status = upstream.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
        logger.warning(
            "Relay upstream request to %s failed: %s", provider, type(err).__name__,
        )
        return _error(502, f"Upstream request failed: {type(err).__name__}")

    logger.debug("Relayed %s request, upstream status %d", provider, status)
    return web.Response(
        body=content,
        status=status,
        content_type="application/json",
        headers=CORS_HEADERS,
    )


async def method_not_allowed(request: web.Request) -> web.Response:
    return _error(405, "Method not allowed")


def create_relay_app(
    endpoints: Optional[dict[str, str]] = None,
    timeout: float = 60.0,
) -> web.Application:
    """Build the relay application.

    Args:
        endpoints: provider name -> upstream URL (defaults to ``RELAY_ENDPOINTS``).
        timeout: total upstream timeout in seconds.
    """
    app = web.Application()
    app[ENDPOINTS_KEY] = dict(endpoints if endpoints is not None else RELAY_ENDPOINTS)
    app[TIMEOUT_KEY] = timeout
    app.router.add_route("OPTIONS", "/ai/proxy", preflight)
    app.router.add_post("/ai/proxy", proxy)
    app.router.add_route("*", "/ai/proxy", method_not_allowed)
    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    web.run_app(create_relay_app())
