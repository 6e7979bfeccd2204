from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Protocol

import aiohttp
from aiohttp import web
from multidict import CIMultiDict

from cache_connect.application.middleware import CacheConnect
from cache_connect.application.request_context import request_id_var

from .binding import cached

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"

# hop-by-hop headers plus the ones aiohttp recomputes for the relayed body
_DROPPED_UPSTREAM_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-length",
        "content-encoding",
    }
)
_DROPPED_REQUEST_HEADERS = frozenset({"host", "connection", "keep-alive", "te", "upgrade", "content-length"})


class StatsPort(Protocol):
    def stats(self) -> dict[str, Any]: ...


@web.middleware
async def request_id_middleware(request: web.Request, handler):
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request["request_id"] = request_id
    token = request_id_var.set(request_id)
    try:
        return await handler(request)
    finally:
        request_id_var.reset(token)


async def _add_request_id_header(request: web.Request, response: web.StreamResponse) -> None:
    # cached routes return prepared responses, so the header goes in before flush
    request_id = request.get("request_id")
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id


class UpstreamProxy:
    def __init__(self, session: aiohttp.ClientSession, upstream_url: str):
        self._session = session
        self._upstream_url = upstream_url.rstrip("/")

    async def handle(self, request: web.Request) -> web.Response:
        url = f"{self._upstream_url}{request.raw_path}"
        headers = CIMultiDict(
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in _DROPPED_REQUEST_HEADERS
        )
        data = await request.read() if request.can_read_body else None

        try:
            async with self._session.request(
                request.method, url, headers=headers, data=data, allow_redirects=False
            ) as upstream:
                body = await upstream.read()
                response_headers = CIMultiDict(
                    (name, value)
                    for name, value in upstream.headers.items()
                    if name.lower() not in _DROPPED_UPSTREAM_HEADERS
                )
                return web.Response(
                    body=body,
                    status=upstream.status,
                    reason=upstream.reason,
                    headers=response_headers,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError):
            logger.exception("Upstream request failed: %s %s", request.method, url)
            return web.Response(
                text=json.dumps({"status": "error", "message": "upstream unavailable"}),
                status=502,
                content_type="application/json",
            )


class HealthCheckHandler:
    def __init__(self, store: StatsPort, connect: CacheConnect):
        self._store = store
        self._connect = connect
        self._start_time = time.monotonic()

    async def health_check(self, request: web.Request) -> web.Response:
        try:
            stats = await asyncio.to_thread(self._store.stats)
            response_data = {
                "status": "healthy",
                "uptime_seconds": round(time.monotonic() - self._start_time, 2),
                "cache_size": stats.get("size", 0),
                "cache_hits": stats.get("hits", 0),
                "cache_misses": stats.get("misses", 0),
                "ttl_ms": self._connect.ttl,
                "timestamp": time.time(),
            }
            return web.json_response(response_data)
        except Exception as exc:
            logger.exception("Health check error")
            return web.json_response({"status": "error", "message": str(exc)}, status=503)

    async def stats(self, request: web.Request) -> web.Response:
        try:
            payload = dict(await asyncio.to_thread(self._store.stats))
            payload["uptime_seconds"] = round(time.monotonic() - self._start_time, 2)
            payload["timestamp"] = time.time()
            return web.json_response(payload)
        except Exception as exc:
            logger.exception("Stats error")
            return web.json_response({"status": "error", "message": str(exc)}, status=503)


def create_proxy_app(
    connect: CacheConnect,
    store: StatsPort,
    upstream_url: str,
    session: aiohttp.ClientSession,
) -> web.Application:
    """Caching reverse proxy: ``GET`` responses from the upstream go through ``connect``."""
    health = HealthCheckHandler(store, connect)
    proxy = UpstreamProxy(session, upstream_url)

    app = web.Application(middlewares=[request_id_middleware])
    app.on_response_prepare.append(_add_request_id_header)
    app.router.add_get("/_cache/health", health.health_check, allow_head=False)
    app.router.add_get("/_cache/stats", health.stats, allow_head=False)
    app.router.add_route("*", "/{tail:.*}", cached(connect, proxy.handle))
    return app
