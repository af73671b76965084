from __future__ import annotations

import os
from dataclasses import dataclass
from typing import BinaryIO, Iterator, List, Optional, Tuple, Union

from multiformats import CID, varint

from .block import Block
from .cid import decode_cid_prefix, format_cid, verify_cid
from .constants import CAR_VERSION, CODEC_RAW, MAX_FRAME_SIZE, MAX_HEADER_SIZE, MAX_VARINT_BYTES
from .dagnode import loads_cbor
from .errors import (
    CarError,
    CarIOError,
    CIDMismatchError,
    ConstraintError,
    FormatError,
    FrameSizeError,
    HeaderError,
    TruncatedFrameError,
    UnsupportedVersionError,
)


@dataclass
class FrameInfo:
    cid: CID
    offset: int  # start of the length varint
    length: int  # len(CID ++ data)
    data_offset: int
    data_length: int


class _Cursor:
    """Forward-only byte cursor over any object with ``read(n)``; tracks position."""

    def __init__(self, f: BinaryIO):
        self.f = f
        self.pos = 0

    def read(self, n: int) -> bytes:
        try:
            b = self.f.read(n)
        except OSError as exc:
            raise CarIOError(f"Cannot read archive: {exc}") from exc
        self.pos += len(b)
        return b

    def read_exact(self, n: int) -> bytes:
        parts = []
        remaining = n
        while remaining:
            b = self.read(remaining)
            if not b:
                raise TruncatedFrameError(f"Unexpected EOF at offset {self.pos} ({remaining} bytes missing)")
            parts.append(b)
            remaining -= len(b)
        return b"".join(parts)

    def read_varint(self) -> Optional[int]:
        """Read one unsigned varint; None on clean EOF before its first byte."""
        buf = bytearray()
        while True:
            b = self.read(1)
            if not b:
                if not buf:
                    return None
                raise TruncatedFrameError(f"Truncated frame length at offset {self.pos}")
            buf += b
            if not b[0] & 0x80:
                break
            if len(buf) >= MAX_VARINT_BYTES:
                raise FrameSizeError(f"Frame length varint too long at offset {self.pos}")
        try:
            return varint.decode(bytes(buf))
        except ValueError as exc:
            raise FormatError(f"Malformed frame length at offset {self.pos - len(buf)}: {exc}") from exc


def _parse_header(cursor: _Cursor) -> Tuple[int, List[CID]]:
    try:
        length = cursor.read_varint()
    except FormatError as exc:
        raise HeaderError(f"Malformed header length: {exc}") from exc
    if length is None:
        raise HeaderError("Empty archive: no header")
    if length == 0 or length > MAX_HEADER_SIZE:
        raise HeaderError(f"Header length {length} out of range")
    try:
        body = cursor.read_exact(length)
    except TruncatedFrameError as exc:
        raise HeaderError(f"Truncated header: {exc}") from exc
    try:
        header = loads_cbor(body)
    except FormatError as exc:
        raise HeaderError(f"Header is not valid CBOR: {exc}") from exc
    if not isinstance(header, dict):
        raise HeaderError("Header is not a map")
    version = header.get("version")
    if type(version) is not int or version != CAR_VERSION:
        raise UnsupportedVersionError(f"Unsupported archive version {version!r}")
    roots = header.get("roots")
    if not isinstance(roots, list) or not all(isinstance(r, CID) for r in roots):
        raise HeaderError("Header roots must be a list of CIDs")
    return version, roots


class CarReader:
    """Forward-only archive reader.

    The header is parsed on ``open()``; ``blocks()`` then yields verified
    blocks in archive order, exactly once. ``source`` may be a path or any
    binary object with ``read(n)`` (a file, a pipe, ``sys.stdin.buffer``);
    no seeking is required.
    """

    def __init__(
        self,
        source: Union[str, os.PathLike, BinaryIO],
        *,
        verify_leaves: bool = True,
        max_frame_size: int = MAX_FRAME_SIZE,
    ):
        self.source = source
        self.verify_leaves = verify_leaves
        self.max_frame_size = max_frame_size
        self.f: Optional[BinaryIO] = None
        self._owns_file = False
        self._cursor: Optional[_Cursor] = None
        self._consumed = False
        self.version: int = 0
        self.roots: List[CID] = []

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        if isinstance(self.source, (str, os.PathLike)):
            try:
                self.f = open(self.source, "rb")
            except FileNotFoundError as exc:
                raise ConstraintError(f"Archive not found: {self.source}") from exc
            except OSError as exc:
                raise CarIOError(f"Cannot open {self.source}: {exc}") from exc
            self._owns_file = True
        else:
            self.f = self.source
        self._cursor = _Cursor(self.f)
        try:
            self.version, self.roots = _parse_header(self._cursor)
        except CarError:
            # Ensure file handle is closed on failure to avoid leaks
            self.close()
            raise

    def close(self):
        if self.f is not None:
            if self._owns_file:
                self.f.close()
            self.f = None

    def blocks(self) -> Iterator[Block]:
        """Yield each block after checking its bytes hash to its CID.

        With ``verify_leaves=False`` raw leaf blocks pass through unchecked;
        structural (dag-cbor) blocks are always verified.
        """
        for info, data in self._frames(keep_data=True):
            if self.verify_leaves or info.cid.codec.name != CODEC_RAW:
                if not verify_cid(info.cid, data):
                    raise CIDMismatchError(
                        f"Block {format_cid(info.cid)} at offset {info.offset} does not match its content"
                    )
            yield Block(cid=info.cid, data=data)

    def frames(self) -> Iterator[FrameInfo]:
        """Yield frame locations without verifying or retaining block data."""
        for info, _data in self._frames(keep_data=False):
            yield info

    # internals
    def _frames(self, keep_data: bool) -> Iterator[Tuple[FrameInfo, bytes]]:
        if self._cursor is None:
            raise RuntimeError("Archive not open")
        if self._consumed:
            raise ConstraintError("Block stream already consumed")
        self._consumed = True
        cursor = self._cursor
        try:
            while True:
                offset = cursor.pos
                length = cursor.read_varint()
                if length is None:
                    return
                if length == 0 or length > self.max_frame_size:
                    raise FrameSizeError(f"Frame length {length} at offset {offset} out of range")
                body_offset = cursor.pos
                body = cursor.read_exact(length)
                cid, n = decode_cid_prefix(body)
                data = body[n:] if keep_data else b""
                info = FrameInfo(
                    cid=cid,
                    offset=offset,
                    length=length,
                    data_offset=body_offset + n,
                    data_length=length - n,
                )
                yield info, data
        finally:
            self.close()


def read_archive(
    source: Union[str, os.PathLike, BinaryIO],
    *,
    verify_leaves: bool = True,
) -> Tuple[List[CID], Iterator[Block]]:
    """Parse the header and return (roots, lazy verified block stream).

    A file opened from a path is closed once the stream is exhausted or
    raises. Callers that may stop early should use :class:`CarReader` as a
    context manager instead, which closes the file on exit.
    """
    reader = CarReader(source, verify_leaves=verify_leaves)
    reader.open()
    return list(reader.roots), reader.blocks()


def index_archive(source: Union[str, os.PathLike, BinaryIO]) -> List[FrameInfo]:
    """Locate every frame (offsets and lengths) without verifying content."""
    with CarReader(source) as reader:
        return list(reader.frames())
