from __future__ import annotations

import logging
from typing import Callable, Optional, Union

from cache_connect.domain.errors import StoreError
from cache_connect.domain.frame import decode, encode

from .ports import CacheableRequest, ChainHandler, FrameStorePort, NextHandler, ResponseSink
from .sink import CapturingSink

IdSpec = Union[str, Callable[[CacheableRequest], str], None]


class CacheConnect:
    """
    Cache-aside layer for ``GET`` responses.

    Only ``GET`` requests are cached. The cache key comes from ``id_spec``: a
    literal string, a callable taking the request, or by default the request
    path with its query string.
    """

    def __init__(self, store: FrameStorePort, *, logger: Optional[logging.Logger] = None):
        self._store = store
        self.ttl = int(store.ttl)
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._debug = self._logger.isEnabledFor(logging.DEBUG)

    @property
    def cache_control(self) -> str:
        return f"public, max-age={self.ttl // 1000}, must-revalidate"

    @staticmethod
    def resolve_key(id_spec: IdSpec, request: CacheableRequest) -> str:
        key = id_spec(request) if callable(id_spec) else id_spec
        return key or request.path_qs

    def cache(self, id_spec: IdSpec = None) -> ChainHandler:
        async def handler(
            request: CacheableRequest, sink: ResponseSink, next_handler: NextHandler
        ) -> None:
            if request.method != "GET":
                await next_handler(request, sink)
                return

            key = self.resolve_key(id_spec, request)
            self._trace("cache check: %s", key)
            sink.headers["Cache-Control"] = self.cache_control
            populated = False

            async def populate(miss_key: str) -> Optional[bytes]:
                nonlocal populated
                populated = True
                self._trace("cache miss: %s", miss_key)
                capture = CapturingSink(sink)
                await next_handler(request, capture)
                return encode(capture.content_type, capture.chunk)

            try:
                frame, from_cache = await self._store.get_set(key, populate, ttl=self.ttl)
            except StoreError:
                self._logger.exception("Cache error for key %r", key)
                if not populated:
                    await next_handler(request, sink)
                return

            if frame is not None and from_cache:
                self._trace("cache hit: %s", key)
                cached = decode(frame)
                if cached.content_type:
                    sink.headers["Content-Type"] = cached.content_type
                await sink.complete(cached.body)

        return handler

    def _trace(self, msg: str, *args) -> None:
        if self._debug:
            self._logger.debug(msg, *args)
