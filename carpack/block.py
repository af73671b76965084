from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from multiformats import CID

from .cid import compute_cid, format_cid
from .constants import CODEC_RAW


@dataclass(frozen=True)
class Block:
    cid: CID
    data: bytes

    @classmethod
    def create(cls, data: bytes, codec: Union[str, int] = CODEC_RAW) -> "Block":
        data = bytes(data)
        return cls(cid=compute_cid(data, codec), data=data)

    @property
    def key(self) -> bytes:
        """Binary CID, used as the arena/dict key."""
        return bytes(self.cid)

    @property
    def frame_length(self) -> int:
        """Length of this block's archive frame body (CID ++ data)."""
        return len(self.key) + len(self.data)

    @property
    def codec(self) -> str:
        return self.cid.codec.name

    def __repr__(self) -> str:
        return f"Block({format_cid(self.cid)}, {len(self.data)} bytes)"
