from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from multiformats import CID

from .block import Block
from .cid import format_cid
from .constants import (
    CODEC_RAW,
    KIND_DIRECTORY,
    KIND_FILE,
    MODE_LIST_BOTH,
    MODE_LIST_PATHS,
    MODE_MATERIALIZE,
    WALK_MODES,
)
from .dagnode import Directory, FileBranch, FileLeaf, Node, decode_node
from .errors import (
    CarError,
    CarIOError,
    CollisionError,
    ConstraintError,
    FormatError,
    IntegrityError,
    MissingBlockError,
)
from .pathutil import join_path
from .reader import CarReader


Source = Union[str, os.PathLike, BinaryIO]


@dataclass
class PathEntry:
    path: str
    cid: CID
    size: int
    kind: str

    @property
    def cid_str(self) -> str:
        return format_cid(self.cid)


@dataclass
class RootResult:
    root: CID
    entries: List[PathEntry] = field(default_factory=list)
    error: Optional[CarError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class WalkResult:
    results: List[RootResult]

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def entries(self) -> List[PathEntry]:
        return [e for r in self.results for e in r.entries]

    @property
    def failed(self) -> List[RootResult]:
        return [r for r in self.results if not r.ok]


class BlockIndex:
    """Arena of blocks keyed by binary CID, owned by a single walk.

    With ``keep_leaf_data=False`` raw leaves are recorded by size only;
    listing never needs leaf bytes, so memory stays proportional to the
    structural blocks.
    """

    def __init__(self, keep_leaf_data: bool = True):
        self.keep_leaf_data = keep_leaf_data
        self._data: Dict[bytes, bytes] = {}
        self._leaf_sizes: Dict[bytes, int] = {}

    @classmethod
    def build(cls, blocks: Iterable[Block], keep_leaf_data: bool = True) -> "BlockIndex":
        index = cls(keep_leaf_data=keep_leaf_data)
        for block in blocks:
            index.add(block)
        return index

    def add(self, block: Block):
        key = bytes(block.cid)
        if not self.keep_leaf_data and block.cid.codec.name == CODEC_RAW:
            self._leaf_sizes[key] = len(block.data)
        else:
            self._data[key] = block.data

    def __contains__(self, cid: CID) -> bool:
        key = bytes(cid)
        return key in self._data or key in self._leaf_sizes

    def __len__(self) -> int:
        return len(self._data) + len(self._leaf_sizes)

    def block(self, cid: CID) -> Block:
        try:
            return Block(cid=cid, data=self._data[bytes(cid)])
        except KeyError:
            raise MissingBlockError(f"Block {format_cid(cid)} is referenced but not present in the archive") from None

    def leaf_size(self, cid: CID) -> int:
        key = bytes(cid)
        if key in self._leaf_sizes:
            return self._leaf_sizes[key]
        return len(self.block(cid).data)

    def node(self, cid: CID) -> Node:
        if cid.codec.name == CODEC_RAW and not self.keep_leaf_data:
            # Presence check only; the bytes were not retained.
            self.leaf_size(cid)
            return FileLeaf(b"")
        return decode_node(self.block(cid))


class _Walker:
    def __init__(
        self,
        index: BlockIndex,
        mode: str,
        output_base: Optional[str],
        on_entry: Optional[Callable[[PathEntry], None]],
    ):
        self.index = index
        self.mode = mode
        self.output_base = output_base
        self.on_entry = on_entry

    @property
    def materialize(self) -> bool:
        return self.mode == MODE_MATERIALIZE

    def walk_root(self, root: CID) -> RootResult:
        result = RootResult(root=root)
        try:
            node = self.index.node(root)
            if isinstance(node, Directory):
                self._directory(node, "", self.output_base, result.entries)
            else:
                name = format_cid(root)
                dest = os.path.join(self.output_base, name) if self.materialize else None
                size = self._file(root, dest)
                self._emit(result.entries, PathEntry(path=name, cid=root, size=size, kind=KIND_FILE))
        except (IntegrityError, FormatError) as exc:
            result.error = exc
        return result

    def _emit(self, entries: List[PathEntry], entry: PathEntry):
        entries.append(entry)
        if self.on_entry is not None:
            self.on_entry(entry)

    def _directory(self, node: Directory, path: str, dest: Optional[str], entries: List[PathEntry]):
        for e in node.entries:
            child_path = join_path(path, e.name)
            child_dest = os.path.join(dest, e.name) if dest is not None else None
            if e.kind == KIND_DIRECTORY:
                child = self.index.node(e.cid)
                if not isinstance(child, Directory):
                    raise IntegrityError(f"{child_path}: {format_cid(e.cid)} is not a directory node")
                if child_dest is not None:
                    _make_dir(child_dest)
                self._emit(entries, PathEntry(path=child_path, cid=e.cid, size=e.size, kind=KIND_DIRECTORY))
                self._directory(child, child_path, child_dest, entries)
            else:
                size = self._file(e.cid, child_dest)
                if size != e.size:
                    raise IntegrityError(f"{child_path}: size {size} does not match directory entry ({e.size})")
                self._emit(entries, PathEntry(path=child_path, cid=e.cid, size=size, kind=KIND_FILE))

    def _file(self, cid: CID, dest: Optional[str]) -> int:
        if dest is None:
            return self._file_size(cid)
        try:
            fh = open(dest, "xb")
        except FileExistsError:
            raise CollisionError(f"Destination exists: {dest}") from None
        except OSError as exc:
            raise CarIOError(f"Cannot create {dest}: {exc}") from exc
        written = 0
        with fh:
            for piece in self._file_bytes(cid):
                try:
                    fh.write(piece)
                except OSError as exc:
                    raise CarIOError(f"Cannot write {dest}: {exc}") from exc
                written += len(piece)
        return written

    def _file_bytes(self, cid: CID) -> Iterator[bytes]:
        node = self.index.node(cid)
        if isinstance(node, FileLeaf):
            yield node.data
            return
        if not isinstance(node, FileBranch):
            raise IntegrityError(f"{format_cid(cid)} is a directory where file content was expected")
        start = 0
        for link in node.links:
            n = 0
            for piece in self._file_bytes(link.cid):
                n += len(piece)
                yield piece
            if n != link.end - start:
                raise IntegrityError(
                    f"Child {format_cid(link.cid)} of {format_cid(cid)} has {n} bytes, expected {link.end - start}"
                )
            start = link.end

    def _file_size(self, cid: CID) -> int:
        """Resolve a file's structure without reading leaf content."""
        if cid.codec.name == CODEC_RAW:
            return self.index.leaf_size(cid)
        node = self.index.node(cid)
        if not isinstance(node, FileBranch):
            raise IntegrityError(f"{format_cid(cid)} is a directory where file content was expected")
        start = 0
        for link in node.links:
            n = self._file_size(link.cid)
            if n != link.end - start:
                raise IntegrityError(
                    f"Child {format_cid(link.cid)} of {format_cid(cid)} has {n} bytes, expected {link.end - start}"
                )
            start = link.end
        return node.size


def _make_dir(path: str):
    try:
        os.mkdir(path)
    except FileExistsError:
        raise CollisionError(f"Destination exists: {path}") from None
    except OSError as exc:
        raise CarIOError(f"Cannot create directory {path}: {exc}") from exc


def _select_roots(declared: Sequence[CID], selected: Optional[Sequence[CID]]) -> List[CID]:
    if not selected:
        if not declared:
            raise ConstraintError("Archive declares no roots; select one or more with --root")
        return list(declared)
    declared_keys = {bytes(r) for r in declared}
    for r in selected:
        if bytes(r) not in declared_keys:
            raise ConstraintError(f"Root {format_cid(r)} is not one of the archive's declared roots")
    return list(selected)


def walk(
    roots: Sequence[CID],
    blocks: Iterable[Block],
    *,
    selected_roots: Optional[Sequence[CID]] = None,
    mode: str = MODE_LIST_BOTH,
    output_base: Optional[Union[str, os.PathLike]] = None,
    on_entry: Optional[Callable[[PathEntry], None]] = None,
) -> WalkResult:
    """Rebuild or enumerate the trees below ``roots``.

    The whole block stream is consumed into a :class:`BlockIndex` first,
    since a directory may reference blocks that appear anywhere in the
    archive. Each root is then resolved on its own: an integrity or format
    failure is recorded on that root's :class:`RootResult` and the remaining
    roots still run. Filesystem failures (including collisions) abort the
    whole walk; files already written are left in place.
    """
    if mode not in WALK_MODES:
        raise ConstraintError(f"Unknown walk mode {mode!r}")
    chosen = _select_roots(roots, selected_roots)
    base: Optional[str] = None
    if mode == MODE_MATERIALIZE:
        base = str(output_base) if output_base is not None else "."
        try:
            os.makedirs(base, exist_ok=True)
        except OSError as exc:
            raise CarIOError(f"Cannot create output directory {base}: {exc}") from exc
    index = BlockIndex.build(blocks, keep_leaf_data=(mode == MODE_MATERIALIZE))
    walker = _Walker(index, mode, base, on_entry)
    return WalkResult(results=[walker.walk_root(r) for r in chosen])


def unpack(
    source: Source,
    roots: Optional[Sequence[CID]] = None,
    output: Union[str, os.PathLike] = ".",
    *,
    on_entry: Optional[Callable[[PathEntry], None]] = None,
) -> WalkResult:
    """Materialize the selected roots (default: all declared roots) under ``output``."""
    with CarReader(source) as reader:
        return walk(
            reader.roots,
            reader.blocks(),
            selected_roots=roots,
            mode=MODE_MATERIALIZE,
            output_base=output,
            on_entry=on_entry,
        )


def _list(source: Source, mode: str) -> List[PathEntry]:
    with CarReader(source, verify_leaves=False) as reader:
        result = walk(reader.roots, reader.blocks(), mode=mode)
    for r in result.results:
        if r.error is not None:
            raise r.error
    return [e for e in result.entries if e.kind == KIND_FILE]


def list_files(source: Source) -> List[PathEntry]:
    """File entries of every root, in walk order (paths are the interesting part)."""
    return _list(source, MODE_LIST_PATHS)


def list_files_and_cids(source: Source) -> List[PathEntry]:
    return _list(source, MODE_LIST_BOTH)


def iter_cids(source: Source) -> Iterator[CID]:
    """Every block CID in archive order, streamed without building an index."""
    with CarReader(source, verify_leaves=False) as reader:
        for block in reader.blocks():
            yield block.cid


def list_cids(source: Source) -> List[CID]:
    return list(iter_cids(source))


def list_roots(source: Source) -> List[CID]:
    with CarReader(source) as reader:
        return list(reader.roots)
