"""
Payload Streams

Cached values travel as byte streams: the producer hands one in, and the
cache writer, the in-memory tier and the caller all need to read the same
bytes. A single-pass stream cannot be shared that way, so a payload is
materialised exactly once into an immutable `Payload` and every consumer
iterates its own stream view over that buffer.

Usage:
    payload = await Payload.materialize(entry.value)

    async for chunk in payload:      # independent cursor
        ...
    data = bytes(payload)            # whole buffer
"""

import base64
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Union

DEFAULT_CHUNK_SIZE = 64 * 1024

PayloadSource = Union["Payload", bytes, bytearray, memoryview, str, AsyncIterable, Iterable]


class Payload:
    """
    Immutable byte buffer with replayable async stream views.

    Each call to `stream()` (or `async for` over the payload) returns a new
    iterator with its own position, so one consumer can never advance
    another's cursor.
    """

    __slots__ = ("_data", "_chunk_size")

    def __init__(self, data: bytes | bytearray | memoryview = b"", chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._data = bytes(data)
        self._chunk_size = max(1, chunk_size)

    @classmethod
    async def materialize(cls, source: PayloadSource) -> "Payload":
        """
        Read a payload source to the end, once.

        Accepts a Payload (returned as-is), bytes-like objects, text (UTF-8
        encoded), async iterables of chunks and sync iterables of chunks.
        Chunks may be bytes-like or str.
        """
        if isinstance(source, Payload):
            return source
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls(source)
        if isinstance(source, str):
            return cls(source.encode("utf-8"))

        chunks: list[bytes] = []
        if isinstance(source, AsyncIterable):
            async for chunk in source:
                chunks.append(_to_bytes(chunk))
        elif isinstance(source, Iterable):
            for chunk in source:
                chunks.append(_to_bytes(chunk))
        else:
            raise TypeError(f"Unsupported payload source: {type(source).__name__}")
        return cls(b"".join(chunks))

    @classmethod
    def from_base64(cls, encoded: str | bytes) -> "Payload":
        """Decode a payload stored in Redis."""
        return cls(base64.b64decode(encoded, validate=True))

    def to_base64(self) -> str:
        """Encode for storage in Redis."""
        return base64.b64encode(self._data).decode("ascii")

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield the buffer in chunks through a fresh cursor."""
        view = memoryview(self._data)
        for start in range(0, len(view), self._chunk_size):
            yield bytes(view[start:start + self._chunk_size])

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.stream()

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the buffer as text. Raises UnicodeDecodeError if not decodable."""
        return self._data.decode(encoding)

    @property
    def size(self) -> int:
        return len(self._data)

    def __bytes__(self) -> bytes:
        return self._data

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Payload):
            return self._data == other._data
        if isinstance(other, (bytes, bytearray)):
            return self._data == bytes(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._data)

    def __repr__(self) -> str:
        return f"Payload(size={len(self._data)})"


def _to_bytes(chunk) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    raise TypeError(f"Unsupported payload chunk: {type(chunk).__name__}")


def decode_payload_text(payload: Payload) -> str:
    """UTF-8 text when decodable, base64 otherwise."""
    try:
        return payload.text()
    except UnicodeDecodeError:
        return payload.to_base64()


__all__ = [
    "Payload",
    "PayloadSource",
    "decode_payload_text",
    "DEFAULT_CHUNK_SIZE",
]
