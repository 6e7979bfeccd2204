from __future__ import annotations


class CacheConnectError(Exception):
    """Base class for cache-connect errors."""


class StoreError(CacheConnectError):
    """The backing store failed to read or populate an entry."""


class EncodingError(CacheConnectError):
    """A response cannot be framed for storage."""


class DecodingError(CacheConnectError):
    """A stored frame is truncated or malformed."""
