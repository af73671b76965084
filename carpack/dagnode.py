"""
DAG node types and their block encoding.

Three node kinds make up a packed tree:

- FileLeaf: one chunk of file content, stored verbatim as a ``raw`` block.
- FileBranch: the ordered links of a chunked file, as a ``dag-cbor`` map
  ``{"kind": "file", "size": n, "links": [[cid, cumulative_end], ...]}``.
  A link may point at a leaf or at another branch (balanced layout).
- Directory: ``{"kind": "directory", "entries": [[name, cid, kind, size], ...]}``.

The discriminant is the block codec (raw vs dag-cbor) plus the ``kind`` field,
and decoding is centralized in :func:`decode_node`. Maps are encoded in
canonical CBOR order so identical nodes always hash to identical CIDs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple, Union

import cbor2
from multiformats import CID

from .block import Block
from .cid import format_cid
from .constants import CID_LINK_TAG, CODEC_DAG_CBOR, CODEC_RAW, KIND_DIRECTORY, KIND_FILE
from .errors import FormatError, NodeDecodeError
from .pathutil import check_entry_name


@dataclass(frozen=True)
class Link:
    cid: CID
    end: int  # cumulative byte length up to and including this child


@dataclass(frozen=True)
class DirEntry:
    name: str
    cid: CID
    kind: str
    size: int


@dataclass(frozen=True)
class FileLeaf:
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class FileBranch:
    links: Tuple[Link, ...]
    size: int


@dataclass(frozen=True)
class Directory:
    entries: Tuple[DirEntry, ...]

    @property
    def size(self) -> int:
        return sum(e.size for e in self.entries)


Node = Union[FileLeaf, FileBranch, Directory]


def cid_link(cid: CID) -> cbor2.CBORTag:
    # dag-cbor links carry the identity multibase prefix (0x00)
    return cbor2.CBORTag(CID_LINK_TAG, b"\x00" + bytes(cid))


def _tag_hook(*args):
    # cbor2 5.x calls hook(decoder, tag); 6.x calls hook(tag, immutable)
    tag = next(a for a in args if isinstance(a, cbor2.CBORTag))
    if tag.tag != CID_LINK_TAG:
        return tag
    value = tag.value
    if not isinstance(value, bytes) or not value or value[0] != 0:
        raise NodeDecodeError("Malformed CID link")
    try:
        return CID.decode(value[1:])
    except (KeyError, ValueError) as exc:
        raise NodeDecodeError(f"Malformed CID link: {exc}") from exc


def dumps_cbor(obj: Any) -> bytes:
    return cbor2.dumps(obj, canonical=True)


def loads_cbor(data: bytes) -> Any:
    try:
        return cbor2.loads(data, tag_hook=_tag_hook)
    except cbor2.CBORDecodeError as exc:
        raise NodeDecodeError(f"Invalid dag-cbor: {exc}") from exc


def encode_node(node: Node) -> Block:
    if isinstance(node, FileLeaf):
        return Block.create(node.data, CODEC_RAW)
    if isinstance(node, FileBranch):
        body = {
            "kind": KIND_FILE,
            "size": node.size,
            "links": [[cid_link(ln.cid), ln.end] for ln in node.links],
        }
        return Block.create(dumps_cbor(body), CODEC_DAG_CBOR)
    if isinstance(node, Directory):
        body = {
            "kind": KIND_DIRECTORY,
            "entries": [[e.name, cid_link(e.cid), e.kind, e.size] for e in node.entries],
        }
        return Block.create(dumps_cbor(body), CODEC_DAG_CBOR)
    raise TypeError(f"Not a DAG node: {node!r}")


def decode_node(block: Block) -> Node:
    """Decode a block into its node variant, validating the body shape."""
    codec = block.codec
    if codec == CODEC_RAW:
        return FileLeaf(block.data)
    if codec != CODEC_DAG_CBOR:
        raise FormatError(f"Unsupported block codec {codec!r} in {format_cid(block.cid)}")
    body = loads_cbor(block.data)
    where = format_cid(block.cid)
    if not isinstance(body, dict):
        raise NodeDecodeError(f"Node {where} is not a map")
    kind = body.get("kind")
    if kind == KIND_FILE:
        return _decode_branch(body, where)
    if kind == KIND_DIRECTORY:
        return _decode_directory(body, where)
    raise NodeDecodeError(f"Node {where} has unknown kind {kind!r}")


def _is_uint(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and v >= 0


def _decode_branch(body: dict, where: str) -> FileBranch:
    size = body.get("size")
    raw_links = body.get("links")
    if not _is_uint(size) or not isinstance(raw_links, list) or not raw_links:
        raise NodeDecodeError(f"Malformed file node {where}")
    links = []
    prev = 0
    for item in raw_links:
        if not (isinstance(item, list) and len(item) == 2 and isinstance(item[0], CID) and _is_uint(item[1])):
            raise NodeDecodeError(f"Malformed link in file node {where}")
        if item[1] < prev:
            raise NodeDecodeError(f"Non-monotonic link offsets in file node {where}")
        prev = item[1]
        links.append(Link(cid=item[0], end=item[1]))
    if prev != size:
        raise NodeDecodeError(f"File node {where} size {size} disagrees with links ({prev})")
    return FileBranch(links=tuple(links), size=size)


def _decode_directory(body: dict, where: str) -> Directory:
    raw_entries = body.get("entries")
    if not isinstance(raw_entries, list):
        raise NodeDecodeError(f"Malformed directory node {where}")
    entries = []
    seen = set()
    for item in raw_entries:
        if not (
            isinstance(item, list)
            and len(item) == 4
            and isinstance(item[0], str)
            and isinstance(item[1], CID)
            and item[2] in (KIND_FILE, KIND_DIRECTORY)
            and _is_uint(item[3])
        ):
            raise NodeDecodeError(f"Malformed entry in directory node {where}")
        name = check_entry_name(item[0])
        if name in seen:
            raise NodeDecodeError(f"Duplicate entry {name!r} in directory node {where}")
        seen.add(name)
        entries.append(DirEntry(name=name, cid=item[1], kind=item[2], size=item[3]))
    return Directory(entries=tuple(entries))
