"""Normalize blob bodies into a single ``bytes`` value.

Backends hand back different shapes: a byte buffer, an (async) iterator of
chunks, or a lower-level stream with ``read()`` such as botocore's
``StreamingBody``. Call sites only ever see ``bytes``.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any


def _to_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    raise TypeError(f"Unsupported chunk type: {type(chunk).__name__}")


def read_body_sync(body: Any) -> bytes:
    """Blocking normalization for buffers, ``read()`` streams and chunk iterables."""
    if body is None:
        raise ValueError("Empty body")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    read = getattr(body, "read", None)
    if callable(read):
        try:
            return _to_bytes(read())
        finally:
            close = getattr(body, "close", None)
            if callable(close):
                close()
    if isinstance(body, str):
        raise TypeError("Refusing to treat str as a blob body")
    try:
        chunks = iter(body)
    except TypeError:
        raise TypeError(f"Unsupported body type: {type(body).__name__}") from None
    return b"".join(_to_bytes(c) for c in chunks)


async def read_body(body: Any) -> bytes:
    """Normalize ``body`` without blocking the event loop."""
    if body is None:
        raise ValueError("Empty body")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if hasattr(body, "__aiter__"):
        parts = [_to_bytes(chunk) async for chunk in body]
        return b"".join(parts)
    read = getattr(body, "read", None)
    if callable(read) and inspect.iscoroutinefunction(read):
        return _to_bytes(await read())
    return await asyncio.to_thread(read_body_sync, body)
