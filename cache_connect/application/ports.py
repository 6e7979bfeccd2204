from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol

from multidict import CIMultiDict

Populate = Callable[[str], Awaitable[Optional[bytes]]]


class FrameStorePort(Protocol):
    ttl: int

    async def get_set(
        self, key: str, populate: Populate, *, ttl: Optional[int] = None
    ) -> tuple[Optional[bytes], bool]: ...


class ResponseSink(Protocol):
    @property
    def headers(self) -> CIMultiDict[str]: ...

    def set_status(self, status: int, reason: Optional[str] = None) -> None: ...

    async def write(self, chunk: bytes) -> None: ...

    async def complete(self, chunk: Optional[bytes] = None) -> None: ...


class CacheableRequest(Protocol):
    method: str
    path_qs: str


NextHandler = Callable[[Any, ResponseSink], Awaitable[None]]
ChainHandler = Callable[[Any, ResponseSink, NextHandler], Awaitable[None]]
