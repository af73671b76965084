from __future__ import annotations

import contextlib
import os
from typing import BinaryIO, Callable, Iterable, List, Optional, Sequence, Tuple, Union

from multiformats import CID, varint

from .block import Block
from .builder import PathLike, pack
from .cid import format_cid, placeholder_cid
from .constants import CAR_VERSION, DEFAULT_CHUNK_SIZE, MAX_FRAME_SIZE
from .dagnode import cid_link, dumps_cbor
from .errors import CarIOError, ConstraintError, IntegrityError
from .pathutil import entry_name


def encode_header(roots: Sequence[CID]) -> bytes:
    """Header frame: varint(length) ++ CBOR {version: 1, roots: [CID...]}."""
    body = dumps_cbor({"version": CAR_VERSION, "roots": [cid_link(r) for r in roots]})
    return varint.encode(len(body)) + body


def encode_frame_prefix(block: Block) -> bytes:
    """varint(len(CID ++ data)) ++ CID; the block data follows unchanged."""
    length = block.frame_length
    if length > MAX_FRAME_SIZE:
        raise ConstraintError(f"Block {format_cid(block.cid)} needs a {length}-byte frame (limit {MAX_FRAME_SIZE})")
    return varint.encode(length) + block.key


def _write(sink: BinaryIO, data: bytes) -> int:
    try:
        sink.write(data)
    except OSError as exc:
        raise CarIOError(f"Cannot write archive: {exc}") from exc
    return len(data)


def write_archive(roots: Sequence[CID], blocks: Iterable[Block], sink: BinaryIO) -> int:
    """Serialize roots and blocks to ``sink`` in one forward pass.

    Returns the number of bytes written. Nothing beyond the current frame
    is buffered, so ``blocks`` may be arbitrarily large.
    """
    written = _write(sink, encode_header(roots))
    for block in blocks:
        written += _write(sink, encode_frame_prefix(block))
        written += _write(sink, block.data)
    return written


class CarWriter:
    """Streaming writer whose roots are patched into the header on finalize.

    ``open()`` reserves the header with placeholder roots of the same encoded
    length; blocks are appended with ``put()``; ``finalize(roots)`` seeks back
    and writes the real header. If block production fails before finalize,
    the placeholder header is left in place.
    """

    def __init__(self, out: Union[PathLike, BinaryIO], root_count: int = 1):
        if root_count < 1:
            raise ConstraintError("root_count must be at least 1")
        self.out = out
        self.root_count = root_count
        self.f: Optional[BinaryIO] = None
        self._owns_file = False
        self._header_offset: Optional[int] = None
        self._header_len = 0
        self.bytes_written = 0
        self.block_count = 0
        self.finalized = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        if isinstance(self.out, (str, os.PathLike)):
            try:
                self.f = open(self.out, "wb")
            except OSError as exc:
                raise CarIOError(f"Cannot create {self.out}: {exc}") from exc
            self._owns_file = True
        else:
            self.f = self.out
        try:
            self._header_offset = self.f.tell() if self.f.seekable() else None
        except OSError:
            self._header_offset = None
        header = encode_header([placeholder_cid()] * self.root_count)
        self._header_len = len(header)
        self.bytes_written += _write(self.f, header)

    def close(self):
        if self.f is not None:
            try:
                self.f.flush()
            finally:
                if self._owns_file:
                    self.f.close()
                self.f = None

    def put(self, block: Block):
        if self.f is None:
            raise RuntimeError("Archive not open")
        self.bytes_written += _write(self.f, encode_frame_prefix(block))
        self.bytes_written += _write(self.f, block.data)
        self.block_count += 1

    def write_blocks(self, blocks: Iterable[Block]) -> int:
        n = 0
        for block in blocks:
            self.put(block)
            n += 1
        return n

    def finalize(self, roots: Sequence[CID]):
        """Rewrite the reserved header with the real roots."""
        if self.f is None:
            raise RuntimeError("Archive not open")
        if len(roots) != self.root_count:
            raise ConstraintError(f"Expected {self.root_count} root(s), got {len(roots)}")
        if self._header_offset is None:
            raise ConstraintError("Cannot patch header roots on a non-seekable sink")
        header = encode_header(roots)
        if len(header) != self._header_len:
            raise ConstraintError(
                "Root CIDs do not fit the reserved header: " + ", ".join(format_cid(r) for r in roots)
            )
        try:
            end = self.f.tell()
            self.f.seek(self._header_offset)
            self.f.write(header)
            self.f.seek(end)
            self.f.flush()
        except OSError as exc:
            raise CarIOError(f"Cannot rewrite archive header: {exc}") from exc
        self.finalized = True


def default_output_path(paths: Union[PathLike, Sequence[PathLike]]) -> str:
    first = paths if isinstance(paths, (str, os.PathLike)) else paths[0]
    return entry_name(str(first)) + ".car"


def pack_to_file(
    paths: Union[PathLike, Sequence[PathLike]],
    output: Optional[PathLike] = None,
    *,
    wrap_with_directory: bool = True,
    on_entry: Optional[Callable[[str], None]] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Tuple[List[CID], str]:
    """Pack ``paths`` into a .car file; returns (roots, output path).

    If packing fails after the output was created, the partial archive is
    removed before the error propagates.
    """
    packing = pack(paths, wrap_with_directory=wrap_with_directory, on_entry=on_entry, chunk_size=chunk_size)
    out = str(output) if output is not None else default_output_path(paths)
    w = CarWriter(out, root_count=packing.root_count)
    w.open()
    try:
        w.write_blocks(packing.blocks)
        w.finalize(packing.roots)
    except BaseException:
        w.close()
        with contextlib.suppress(OSError):
            os.remove(out)
        raise
    w.close()
    return packing.roots, out


def pack_to_stream(
    paths: Union[PathLike, Sequence[PathLike]],
    sink: BinaryIO,
    *,
    wrap_with_directory: bool = True,
    on_entry: Optional[Callable[[str], None]] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> List[CID]:
    """Pack to a non-seekable sink (e.g. stdout).

    The roots must precede the blocks, so the tree is packed twice: a dry
    run to learn the roots, then the real stream. Packing is deterministic;
    if the input changes between the two passes, ``IntegrityError`` is raised.
    """
    dry = pack(paths, wrap_with_directory=wrap_with_directory, chunk_size=chunk_size)
    for _ in dry.blocks:
        pass
    roots = dry.roots
    packing = pack(paths, wrap_with_directory=wrap_with_directory, on_entry=on_entry, chunk_size=chunk_size)
    write_archive(roots, packing.blocks, sink)
    if [bytes(r) for r in packing.roots] != [bytes(r) for r in roots]:
        raise IntegrityError("Input changed while packing; archive roots are stale")
    try:
        sink.flush()
    except OSError as exc:
        raise CarIOError(f"Cannot write archive: {exc}") from exc
    return roots
