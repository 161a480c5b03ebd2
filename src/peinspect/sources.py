"""
Byte sources and cooperative chunked reading.

A source is read-only and may be shared between concurrent requests; each
request keeps its own buffer.
"""
from __future__ import annotations

import asyncio
import os
from typing import Callable, Iterator, Optional, Protocol

from peinspect.errors import AnalysisCancelled


class ByteSource(Protocol):
    """Random-access read-only bytes of known size."""

    @property
    def size(self) -> int: ...

    def read(self, offset: int, length: int) -> bytes: ...


class BytesSource:
    def __init__(self, data: bytes, name: str = "<memory>"):
        self._data = bytes(data)
        self.name = name

    @property
    def size(self) -> int:
        return len(self._data)

    def read(self, offset: int, length: int) -> bytes:
        return self._data[offset:offset + length]


class FileSource:
    """A file on disk, opened per read so the source holds no handle."""

    def __init__(self, path: str):
        self.path = path
        self.name = os.path.basename(path)
        self._size = os.path.getsize(path)

    @property
    def size(self) -> int:
        return self._size

    def read(self, offset: int, length: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(offset)
            return f.read(length)


def iter_chunks(
    source: ByteSource,
    chunk_size: int,
    still_wanted: Optional[Callable[[], bool]] = None,
) -> Iterator[bytes]:
    """Blocking chunk iterator over the whole source, for worker-thread consumers."""
    offset = 0
    while offset < source.size:
        if still_wanted is not None and not still_wanted():
            raise AnalysisCancelled(f"read stopped at {offset:#x}")
        chunk = source.read(offset, min(chunk_size, source.size - offset))
        if not chunk:
            return
        offset += len(chunk)
        yield chunk


async def read_chunked(
    source: ByteSource,
    offset: int,
    length: int,
    chunk_size: int,
    still_wanted: Optional[Callable[[], bool]] = None,
    on_chunk: Optional[Callable[[int, int], None]] = None,
) -> bytes:
    """
    Read length bytes from offset in sequential chunks, yielding to the event
    loop after each one. on_chunk(done, total) is called after every chunk.
    Raises AnalysisCancelled as soon as still_wanted() returns False.
    """
    length = max(0, min(length, source.size - offset))
    parts: list[bytes] = []
    done = 0
    while done < length:
        if still_wanted is not None and not still_wanted():
            raise AnalysisCancelled(f"read stopped at {offset + done:#x}")
        chunk = source.read(offset + done, min(chunk_size, length - done))
        if not chunk:
            break
        parts.append(chunk)
        done += len(chunk)
        if on_chunk is not None:
            on_chunk(done, length)
        await asyncio.sleep(0)
    return b"".join(parts)
