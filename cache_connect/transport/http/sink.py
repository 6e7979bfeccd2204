from __future__ import annotations

from typing import Optional

from aiohttp import web
from multidict import CIMultiDict


class StreamResponseSink:
    """``ResponseSink`` over an aiohttp ``StreamResponse``."""

    def __init__(self, request: web.Request, response: Optional[web.StreamResponse] = None):
        self._request = request
        self.response = response if response is not None else web.StreamResponse()

    @property
    def headers(self) -> CIMultiDict[str]:
        return self.response.headers

    def set_status(self, status: int, reason: Optional[str] = None) -> None:
        self.response.set_status(status, reason)

    async def write(self, chunk: bytes) -> None:
        if not self.response.prepared:
            await self.response.prepare(self._request)
        await self.response.write(chunk)

    async def complete(self, chunk: Optional[bytes] = None) -> None:
        if not self.response.prepared:
            # whole body known up front
            self.response.content_length = len(chunk) if chunk else 0
            await self.response.prepare(self._request)
        await self.response.write_eof(chunk or b"")
