from __future__ import annotations

import hashlib
import unittest

from carpack.block import Block
from carpack.cid import (
    cid_from_bytes,
    cid_to_bytes,
    compute_cid,
    decode_cid_prefix,
    format_cid,
    parse_cid,
    placeholder_cid,
    verify_cid,
)
from carpack.errors import ConstraintError, FormatError


class CIDTests(unittest.TestCase):
    def test_compute_and_verify(self):
        cid = compute_cid(b"hi")
        self.assertEqual(cid.version, 1)
        self.assertEqual(cid.codec.name, "raw")
        self.assertEqual(cid.hashfun.name, "sha2-256")
        self.assertTrue(verify_cid(cid, b"hi"))
        self.assertFalse(verify_cid(cid, b"ho"))
        # Same content always gets the same identifier
        self.assertEqual(bytes(compute_cid(b"hi")), bytes(cid))
        self.assertNotEqual(bytes(compute_cid(b"hi", "dag-cbor")), bytes(cid))

    def test_digest_is_plain_sha256(self):
        cid = compute_cid(b"hello world")
        self.assertEqual(bytes(cid)[-32:], hashlib.sha256(b"hello world").digest())

    def test_string_form(self):
        raw = compute_cid(b"abc")
        node = compute_cid(b"abc", "dag-cbor")
        self.assertTrue(format_cid(raw).startswith("bafkrei"))
        self.assertTrue(format_cid(node).startswith("bafyrei"))
        self.assertEqual(bytes(parse_cid(format_cid(raw))), bytes(raw))
        self.assertEqual(bytes(parse_cid("  " + format_cid(node) + "\n")), bytes(node))

    def test_parse_rejects_garbage(self):
        with self.assertRaises(ConstraintError):
            parse_cid("!!not-a-cid!!")

    def test_binary_roundtrip(self):
        cid = compute_cid(b"payload", "dag-cbor")
        raw = cid_to_bytes(cid)
        self.assertEqual(bytes(cid_from_bytes(raw)), raw)
        with self.assertRaises(FormatError):
            cid_from_bytes(raw + b"\x00")

    def test_prefix_split(self):
        cid = compute_cid(b"frame body")
        cid_bytes = bytes(cid)
        decoded, consumed = decode_cid_prefix(cid_bytes + b"frame body")
        self.assertEqual(consumed, len(cid_bytes))
        self.assertEqual(bytes(decoded), cid_bytes)

    def test_prefix_cidv0(self):
        digest = hashlib.sha256(b"legacy").digest()
        decoded, consumed = decode_cid_prefix(b"\x12\x20" + digest + b"legacy")
        self.assertEqual(consumed, 34)
        self.assertEqual(decoded.version, 0)
        self.assertTrue(verify_cid(decoded, b"legacy"))

    def test_prefix_errors(self):
        cid_bytes = bytes(compute_cid(b"x"))
        with self.assertRaises(FormatError):
            decode_cid_prefix(cid_bytes[:-5])
        with self.assertRaises(FormatError):
            decode_cid_prefix(b"\x12\x20\x00")
        with self.assertRaises(FormatError):
            # version 2 does not exist
            decode_cid_prefix(b"\x02" + cid_bytes[1:])

    def test_placeholder_matches_real_length(self):
        placeholder = placeholder_cid()
        self.assertEqual(len(bytes(placeholder)), len(bytes(compute_cid(b"x", "dag-cbor"))))
        self.assertEqual(len(bytes(placeholder)), len(bytes(compute_cid(b"x"))))
        self.assertFalse(verify_cid(placeholder, b""))

    def test_block_create(self):
        block = Block.create(b"data")
        self.assertEqual(block.codec, "raw")
        self.assertEqual(block.key, bytes(compute_cid(b"data")))
        self.assertIn("4 bytes", repr(block))


if __name__ == "__main__":
    unittest.main()
