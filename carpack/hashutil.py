from __future__ import annotations

import hashlib
import os
from typing import BinaryIO, Union

from multiformats import CID, multihash

from .constants import CODEC_CAR, DEFAULT_BASE, DEFAULT_HASH, HASH_READ_SIZE
from .errors import CarIOError, ConstraintError


def sha256_stream(f: BinaryIO, read_size: int = HASH_READ_SIZE) -> bytes:
    # Incremental so archives larger than memory can be hashed.
    h = hashlib.sha256()
    while True:
        try:
            b = f.read(read_size)
        except OSError as exc:
            raise CarIOError(f"Cannot read archive: {exc}") from exc
        if not b:
            break
        h.update(b)
    return h.digest()


def hash_archive(source: Union[str, os.PathLike, BinaryIO]) -> CID:
    """CID of the archive file itself (sha2-256, ``car`` multicodec).

    This identifies the container bytes, not the roots it holds.
    """
    if isinstance(source, (str, os.PathLike)):
        try:
            with open(source, "rb") as f:
                digest = sha256_stream(f)
        except FileNotFoundError as exc:
            raise ConstraintError(f"Archive not found: {source}") from exc
        except CarIOError:
            raise
        except OSError as exc:
            raise CarIOError(f"Cannot open {source}: {exc}") from exc
    else:
        digest = sha256_stream(source)
    return CID(DEFAULT_BASE, 1, CODEC_CAR, multihash.wrap(digest, DEFAULT_HASH))
