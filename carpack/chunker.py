from __future__ import annotations

from typing import BinaryIO, Iterator

from .constants import DEFAULT_CHUNK_SIZE
from .errors import ConstraintError


def chunk(stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Split a byte stream into fixed-size chunks in one forward pass.

    Every chunk except the last is exactly ``chunk_size`` bytes. Short reads
    (pipes, sockets) are coalesced so boundaries depend only on the content.
    An empty stream yields a single empty chunk.
    """
    if chunk_size <= 0:
        raise ConstraintError("chunk_size must be positive")
    emitted = False
    buf = bytearray()
    while True:
        data = stream.read(chunk_size - len(buf))
        if not data:
            break
        buf += data
        if len(buf) == chunk_size:
            yield bytes(buf)
            emitted = True
            buf.clear()
    if buf or not emitted:
        yield bytes(buf)
