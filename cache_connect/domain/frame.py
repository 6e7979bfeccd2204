"""
Length-prefixed framing of a cacheable response.

Layout: ``[1 byte N][N bytes content type, UTF-8][body]``. The length is
explicit, so neither part needs escaping.
"""

from __future__ import annotations

from typing import NamedTuple, Optional, Union

from .errors import DecodingError, EncodingError

MAX_CONTENT_TYPE_BYTES = 255


class ResponseFrame(NamedTuple):
    content_type: str
    body: bytes


def encode(content_type: str, body: Optional[Union[bytes, str]]) -> Optional[bytes]:
    """Frame ``body`` with its content type; ``None`` means nothing to cache."""
    if body is None:
        return None

    content_type_bytes = content_type.encode("utf-8")
    if len(content_type_bytes) > MAX_CONTENT_TYPE_BYTES:
        raise EncodingError(
            f"content type is {len(content_type_bytes)} bytes (max {MAX_CONTENT_TYPE_BYTES})"
        )

    body_bytes = body.encode("utf-8") if isinstance(body, str) else bytes(body)

    buffer = bytearray(len(body_bytes) + len(content_type_bytes) + 1)
    buffer[0] = len(content_type_bytes)
    buffer[1 : len(content_type_bytes) + 1] = content_type_bytes
    buffer[len(content_type_bytes) + 1 :] = body_bytes
    return bytes(buffer)


def decode(frame: bytes) -> ResponseFrame:
    if not frame:
        raise DecodingError("frame is empty")

    length = frame[0]
    if len(frame) < length + 1:
        raise DecodingError(
            f"frame is {len(frame)} bytes, content type needs {length + 1}"
        )

    try:
        content_type = bytes(frame[1 : length + 1]).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodingError("content type is not valid UTF-8") from exc

    return ResponseFrame(content_type, bytes(frame[length + 1 :]))
