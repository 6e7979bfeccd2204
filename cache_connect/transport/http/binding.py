"""
aiohttp binding for :class:`CacheConnect`.

``cached`` turns an ordinary aiohttp handler into a cached route::

    connect = CacheConnect(store)
    app.router.add_get("/items", cached(connect, list_items))
    app.router.add_get("/items/{id}", cached(connect, get_item, lambda r: r.match_info["id"]))

The wrapped handler must return an unprepared ``web.Response``; its status,
headers and body are relayed through the cache layer to the client.
"""

from __future__ import annotations

import functools
from typing import Awaitable, Callable

from aiohttp import web

from cache_connect.application.middleware import CacheConnect, IdSpec
from cache_connect.application.ports import ResponseSink

from .sink import StreamResponseSink

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

_RECOMPUTED_HEADERS = frozenset({"content-length", "transfer-encoding"})


async def relay_response(response: web.StreamResponse, sink: ResponseSink) -> None:
    if not isinstance(response, web.Response) or response.prepared:
        raise TypeError("cached handlers must return an unprepared web.Response")

    body = response.body
    if body is not None and not isinstance(body, (bytes, bytearray)):
        raise TypeError(f"cannot relay a {type(body).__name__} response body")

    sink.set_status(response.status, response.reason)
    seen: set[str] = set()
    for name in response.headers.keys():
        lowered = name.lower()
        if lowered in seen or lowered in _RECOMPUTED_HEADERS:
            continue
        seen.add(lowered)
        sink.headers.popall(name, None)
        for value in response.headers.getall(name):
            sink.headers.add(name, value)

    await sink.complete(bytes(body) if body else None)


def cached(connect: CacheConnect, handler: Handler, id_spec: IdSpec = None) -> Handler:
    chain_handler = connect.cache(id_spec)

    async def next_handler(request: web.Request, sink: ResponseSink) -> None:
        await relay_response(await handler(request), sink)

    @functools.wraps(handler)
    async def route(request: web.Request) -> web.StreamResponse:
        sink = StreamResponseSink(request)
        await chain_handler(request, sink, next_handler)
        return sink.response

    return route
