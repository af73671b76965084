from __future__ import annotations

import os
from typing import Callable, Generator, Iterator, List, Optional, Sequence, Tuple, Union

from multiformats import CID

from .block import Block
from .chunker import chunk
from .cid import format_cid, placeholder_cid
from .constants import DEFAULT_CHUNK_SIZE, KIND_DIRECTORY, KIND_FILE, MAX_CHILDREN, MAX_FRAME_SIZE
from .dagnode import DirEntry, Directory, FileBranch, FileLeaf, Link, encode_node
from .errors import CarIOError, ConstraintError
from .pathutil import entry_name, join_path, path_kind, scan_dir


PathLike = Union[str, os.PathLike]
_Child = Tuple[CID, int]  # (cid, byte size)


class _BalancedLayout:
    """Streaming balanced tree over a file's leaves.

    Leaves are grouped into branch nodes of at most ``max_children`` links,
    those branches are grouped the same way, and so on up to a single node.
    Only one partially filled node per level is held in memory.
    """

    def __init__(self, max_children: int):
        self.max_children = max_children
        self.levels: List[List[_Child]] = [[]]

    def push(self, cid: CID, size: int) -> Iterator[Block]:
        self.levels[0].append((cid, size))
        level = 0
        while len(self.levels[level]) == self.max_children:
            yield from self._promote(level)
            level += 1

    def finish(self) -> Generator[Block, None, _Child]:
        level = 0
        while True:
            items = self.levels[level]
            top = level == len(self.levels) - 1
            if top and len(items) == 1:
                return items[0]
            if items:
                yield from self._promote(level)
            level += 1

    def _promote(self, level: int) -> Iterator[Block]:
        links = []
        end = 0
        for cid, size in self.levels[level]:
            end += size
            links.append(Link(cid=cid, end=end))
        block = encode_node(FileBranch(links=tuple(links), size=end))
        self.levels[level] = []
        if level + 1 == len(self.levels):
            self.levels.append([])
        self.levels[level + 1].append((block.cid, end))
        yield block


class Packing:
    """Result of :func:`pack`: a single-pass block stream plus its roots.

    ``blocks`` may be iterated exactly once. ``roots`` becomes available when
    the stream has been fully consumed; ``root_count`` is known up front so a
    writer can reserve header space.
    """

    def __init__(
        self,
        paths: Union[PathLike, Sequence[PathLike]],
        *,
        wrap_with_directory: bool = True,
        on_entry: Optional[Callable[[str], None]] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_children: int = MAX_CHILDREN,
        max_frame_size: int = MAX_FRAME_SIZE,
    ):
        if isinstance(paths, str) or not isinstance(paths, Sequence):
            paths = [paths]
        if not paths:
            raise ConstraintError("No input paths given")
        if chunk_size <= 0:
            raise ConstraintError("chunk_size must be positive")
        if max_children < 2:
            raise ConstraintError("max_children must be at least 2")
        if chunk_size + len(bytes(placeholder_cid())) > max_frame_size:
            raise ConstraintError(f"chunk_size {chunk_size} does not fit in a {max_frame_size}-byte frame")
        self.wrap_with_directory = wrap_with_directory
        self.on_entry = on_entry
        self.chunk_size = chunk_size
        self.max_children = max_children
        self.max_frame_size = max_frame_size
        self._inputs: List[Tuple[str, str, str]] = []
        seen = set()
        for p in paths:
            fs_path = str(p)
            kind = path_kind(fs_path)
            if kind is None:
                raise ConstraintError(f"Input path does not exist or is not a file/directory: {fs_path}")
            name = entry_name(fs_path)
            if wrap_with_directory and name in seen:
                raise ConstraintError(f"Duplicate input name {name!r}; cannot wrap in one directory")
            seen.add(name)
            self._inputs.append((name, fs_path, kind))
        self.root_count = 1 if wrap_with_directory else len(self._inputs)
        self._roots: Optional[List[CID]] = None
        self.blocks: Iterator[Block] = self._checked(self._generate())

    @property
    def roots(self) -> List[CID]:
        if self._roots is None:
            raise ConstraintError("Roots are only known after the block stream is consumed")
        return list(self._roots)

    @property
    def root(self) -> CID:
        roots = self.roots
        if len(roots) != 1:
            raise ConstraintError(f"Packing has {len(roots)} roots, not one")
        return roots[0]

    def __iter__(self) -> Iterator[Block]:
        return self.blocks

    # internals
    def _checked(self, blocks: Iterator[Block]) -> Iterator[Block]:
        # Nothing is emitted that a reader would refuse as an oversized frame
        for block in blocks:
            if block.frame_length > self.max_frame_size:
                raise ConstraintError(
                    f"Block {format_cid(block.cid)} needs a {block.frame_length}-byte frame "
                    f"(limit {self.max_frame_size})"
                )
            yield block

    def _generate(self) -> Iterator[Block]:
        entries: List[DirEntry] = []
        for name, fs_path, kind in self._inputs:
            entry = yield from self._pack_entry(fs_path, name, kind, name)
            entries.append(entry)
        if self.wrap_with_directory:
            block = encode_node(Directory(entries=tuple(entries)))
            yield block
            self._roots = [block.cid]
        else:
            self._roots = [e.cid for e in entries]

    def _pack_entry(self, fs_path: str, name: str, kind: str, rel: str) -> Generator[Block, None, DirEntry]:
        if self.on_entry is not None:
            self.on_entry(rel)
        if kind == KIND_DIRECTORY:
            return (yield from self._pack_dir(fs_path, name, rel))
        return (yield from self._pack_file(fs_path, name))

    def _pack_dir(self, fs_path: str, name: str, rel: str) -> Generator[Block, None, DirEntry]:
        entries: List[DirEntry] = []
        for child_name, child_path, kind in scan_dir(fs_path):
            entry = yield from self._pack_entry(child_path, child_name, kind, join_path(rel, child_name))
            entries.append(entry)
        node = Directory(entries=tuple(entries))
        block = encode_node(node)
        yield block
        return DirEntry(name=name, cid=block.cid, kind=KIND_DIRECTORY, size=node.size)

    def _pack_file(self, fs_path: str, name: str) -> Generator[Block, None, DirEntry]:
        layout = _BalancedLayout(self.max_children)
        try:
            with open(fs_path, "rb") as fh:
                for data in chunk(fh, self.chunk_size):
                    block = encode_node(FileLeaf(data))
                    yield block
                    yield from layout.push(block.cid, len(data))
        except OSError as exc:
            raise CarIOError(f"Cannot read {fs_path}: {exc}") from exc
        cid, size = yield from layout.finish()
        return DirEntry(name=name, cid=cid, kind=KIND_FILE, size=size)


def pack(
    paths: Union[PathLike, Sequence[PathLike]],
    *,
    wrap_with_directory: bool = True,
    on_entry: Optional[Callable[[str], None]] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_children: int = MAX_CHILDREN,
    max_frame_size: int = MAX_FRAME_SIZE,
) -> Packing:
    """Turn files/directories into a content-addressed DAG.

    Input paths are checked eagerly (``ConstraintError`` if missing); file
    contents are only read as ``Packing.blocks`` is consumed. Every block is
    yielded before any block that links to it.
    """
    return Packing(
        paths,
        wrap_with_directory=wrap_with_directory,
        on_entry=on_entry,
        chunk_size=chunk_size,
        max_children=max_children,
        max_frame_size=max_frame_size,
    )
