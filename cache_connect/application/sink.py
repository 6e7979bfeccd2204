from __future__ import annotations

import logging
from typing import Optional

from multidict import CIMultiDict

from .ports import ResponseSink

logger = logging.getLogger(__name__)


class CapturingSink:
    """
    Response sink decorator that records a single-chunk body for caching.

    Every call is forwarded to the wrapped sink unchanged and in order; the
    recording is observational. A response made of more than one non-empty
    chunk is delivered as usual but never offered to the cache.
    """

    def __init__(self, inner: ResponseSink):
        self._inner = inner
        self._content_type = ""
        self._chunk: Optional[bytes] = None
        self._invalidated = False
        self._completing = False
        self._completed = False

    @property
    def headers(self) -> CIMultiDict[str]:
        return self._inner.headers

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def chunk(self) -> Optional[bytes]:
        """The captured body, or ``None`` when the response is not cacheable."""
        if not self._completed or self._invalidated:
            return None
        return self._chunk

    def set_status(self, status: int, reason: Optional[str] = None) -> None:
        self._inner.set_status(status, reason)
        if not 200 <= status < 300:
            logger.debug("status %d, no cache", status)
            self._invalidated = True
            self._chunk = None

    async def write(self, chunk: bytes) -> None:
        await self._inner.write(chunk)
        if chunk:
            self._record(chunk)

    async def complete(self, chunk: Optional[bytes] = None) -> None:
        if self._completing:
            await self._inner.complete(chunk)
            return
        self._completing = True

        capture_final = False
        if chunk:
            if self._chunk is not None or self._invalidated:
                self._invalidate()
            else:
                capture_final = True

        await self._inner.complete(chunk)

        # headers are flushed once the wrapped completion returns
        if capture_final:
            self._content_type = self._current_content_type()
            self._chunk = chunk
        self._completed = True

    def _record(self, chunk: bytes) -> None:
        if self._invalidated:
            return
        if self._chunk is not None:
            self._invalidate()
            return
        self._content_type = self._current_content_type()
        self._chunk = chunk

    def _invalidate(self) -> None:
        logger.debug("multiple writes, no cache")
        self._invalidated = True
        self._chunk = None

    def _current_content_type(self) -> str:
        return self._inner.headers.get("Content-Type", "")
