from __future__ import annotations

import io
import os
import unittest

from carpack.chunker import chunk
from carpack.errors import ConstraintError


class _Trickle(io.RawIOBase):
    """Returns at most ``step`` bytes per read, like a slow pipe."""

    def __init__(self, data: bytes, step: int):
        self._buf = io.BytesIO(data)
        self._step = step

    def readable(self):
        return True

    def read(self, n=-1):
        if n is None or n < 0:
            n = self._step
        return self._buf.read(min(n, self._step))


class ChunkerTests(unittest.TestCase):
    def test_fixed_sizes(self):
        data = os.urandom(10_000)
        chunks = list(chunk(io.BytesIO(data), 4096))
        self.assertEqual([len(c) for c in chunks], [4096, 4096, 1808])
        self.assertEqual(b"".join(chunks), data)

    def test_exact_multiple(self):
        data = b"x" * 300
        chunks = list(chunk(io.BytesIO(data), 100))
        self.assertEqual([len(c) for c in chunks], [100, 100, 100])

    def test_empty_stream_yields_one_empty_chunk(self):
        self.assertEqual(list(chunk(io.BytesIO(b""), 16)), [b""])

    def test_short_reads_are_coalesced(self):
        data = os.urandom(1000)
        direct = list(chunk(io.BytesIO(data), 256))
        trickled = list(chunk(_Trickle(data, 7), 256))
        self.assertEqual(direct, trickled)

    def test_lazy(self):
        gen = chunk(io.BytesIO(b"a" * 50), 10)
        self.assertEqual(next(gen), b"a" * 10)
        gen.close()

    def test_invalid_size(self):
        with self.assertRaises(ConstraintError):
            list(chunk(io.BytesIO(b"abc"), 0))


if __name__ == "__main__":
    unittest.main()
