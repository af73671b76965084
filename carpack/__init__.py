"""
carpack: pack filesystem trees into content-addressed archives (CARv1) and back.

Features:

- Deterministic DAG construction: fixed-size chunking, raw leaves, balanced
  dag-cbor file branches, and sorted dag-cbor directories.
- Streaming archive writer/reader: varint-framed (CID, bytes) blocks after a
  CBOR header of root CIDs. Reads need only a forward byte cursor (pipes work).
- Every block is checked against its CID on read; missing blocks and
  length mismatches are reported per root during unpack.
- Listing (paths, CIDs, both, roots) without materializing anything, and a
  CID for the archive file itself.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "cid",
    "builder",
    "writer",
    "reader",
    "walker",
    "hashutil",
]

# Programmatic API: carpack.builder.pack, carpack.writer.write_archive/pack_to_file,
# carpack.reader.read_archive, carpack.walker.walk/unpack/list_*, and the CLI
# functions in carpack.cli (cmd_pack/cmd_unpack/...) which take normal parameters.
