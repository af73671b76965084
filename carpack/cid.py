from __future__ import annotations

from typing import Tuple, Union

from multiformats import CID, multihash, varint

from .constants import CODEC_RAW, DEFAULT_BASE, DEFAULT_HASH
from .errors import ConstraintError, FormatError


_CIDV0_PREFIX = b"\x12\x20"  # sha2-256, 32-byte digest
_CIDV0_LEN = 34


def compute_cid(data: bytes, codec: Union[str, int] = CODEC_RAW, hashfun: Union[str, int] = DEFAULT_HASH) -> CID:
    """Content identifier (CIDv1) of ``data`` under ``codec`` and ``hashfun``."""
    digest = multihash.digest(bytes(data), hashfun)
    return CID(DEFAULT_BASE, 1, codec, digest)


def verify_cid(cid: CID, data: bytes) -> bool:
    """Recompute the digest of ``data`` with the CID's own hash function and compare."""
    try:
        digest = multihash.digest(bytes(data), cid.hashfun.name)
    except (KeyError, ValueError, NotImplementedError) as exc:
        raise FormatError(f"Unsupported hash function in {format_cid(cid)}: {exc}") from exc
    return digest == cid.digest


def cid_to_bytes(cid: CID) -> bytes:
    return bytes(cid)


def cid_from_bytes(raw: bytes) -> CID:
    cid, consumed = decode_cid_prefix(raw)
    if consumed != len(raw):
        raise FormatError("Trailing bytes after CID")
    return cid


def decode_cid_prefix(buf: bytes) -> Tuple[CID, int]:
    """Decode the CID at the start of ``buf``.

    Returns the CID and the number of bytes it occupies, so the caller can
    split a frame body into ``CID ++ data``.
    """
    view = memoryview(buf)
    if bytes(view[:2]) == _CIDV0_PREFIX:
        if len(view) < _CIDV0_LEN:
            raise FormatError("Truncated CIDv0")
        return _decode(bytes(view[:_CIDV0_LEN])), _CIDV0_LEN
    pos = 0
    try:
        # version, codec, hash function, digest length
        fields = []
        for _ in range(4):
            val, n, _rest = varint.decode_raw(view[pos:])
            fields.append(val)
            pos += n
    except ValueError as exc:
        raise FormatError(f"Malformed CID prefix: {exc}") from exc
    version, _codec, _hashfun, digest_len = fields
    if version != 1:
        raise FormatError(f"Unsupported CID version {version}")
    end = pos + digest_len
    if end > len(view):
        raise FormatError("Truncated CID digest")
    return _decode(bytes(view[:end])), end


def _decode(raw: bytes) -> CID:
    try:
        return CID.decode(raw)
    except (KeyError, ValueError) as exc:
        raise FormatError(f"Malformed CID: {exc}") from exc


def parse_cid(text: str) -> CID:
    """Parse a CID given in its multibase string form (or a base58 CIDv0)."""
    try:
        return CID.decode(text.strip())
    except (KeyError, ValueError) as exc:
        raise ConstraintError(f"Invalid CID {text!r}: {exc}") from exc


def format_cid(cid: CID) -> str:
    if cid.version == 0:
        return str(cid)
    return cid.encode(DEFAULT_BASE)


def placeholder_cid() -> CID:
    """All-zero sha2-256 CIDv1; same encoded length as any real root we produce."""
    return CID(DEFAULT_BASE, 1, CODEC_RAW, multihash.wrap(b"\x00" * 32, DEFAULT_HASH))
