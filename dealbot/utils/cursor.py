"""Signed continuation tokens for digest pagination.

A token carries nothing but the next offset. The signature only stops a client
from forging offsets; no state is kept server-side.
"""

from __future__ import annotations

import os

from itsdangerous import BadSignature, URLSafeSerializer

CURSOR_PREFIX = "digest:"
# Telegram rejects callback_data longer than 64 bytes.
MAX_CALLBACK_BYTES = 64


class InvalidCursor(ValueError):
    pass


def _serializer() -> URLSafeSerializer:
    secret = os.environ.get("CURSOR_SECRET", "change-me")
    return URLSafeSerializer(secret_key=secret, salt="digest-cursor")


def encode_cursor(offset: int) -> str:
    if offset < 0:
        raise ValueError("offset must be non-negative")
    token = f"{CURSOR_PREFIX}{_serializer().dumps(offset)}"
    if len(token.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ValueError(f"cursor for offset {offset} exceeds callback limit")
    return token


def decode_cursor(token: str) -> int:
    if not token.startswith(CURSOR_PREFIX):
        raise InvalidCursor("not a digest cursor")
    try:
        offset = _serializer().loads(token[len(CURSOR_PREFIX):])
    except BadSignature as exc:
        raise InvalidCursor("cursor signature mismatch") from exc
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        raise InvalidCursor("cursor payload is not an offset")
    return offset
