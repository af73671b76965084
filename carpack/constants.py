# Format version
CAR_VERSION = 1

# Multicodec names (resolved through the multiformats table)
CODEC_RAW = "raw"            # 0x55, file leaves
CODEC_DAG_CBOR = "dag-cbor"  # 0x71, branches and directories
CODEC_CAR = "car"            # 0x0202, identifier of a whole archive

DEFAULT_HASH = "sha2-256"
DEFAULT_BASE = "base32"
CID_LINK_TAG = 42  # dag-cbor tag for embedded CIDs

# Node kinds, persisted in dag-cbor bodies and directory entries
KIND_FILE = "file"
KIND_DIRECTORY = "directory"

DEFAULT_CHUNK_SIZE = 262_144  # 256 KiB
MAX_CHILDREN = 174  # links per file branch node (balanced layout)

# Reader safety bounds
MAX_HEADER_SIZE = 1_048_576  # 1 MiB
MAX_FRAME_SIZE = 8 * 1_048_576  # 8 MiB
MAX_VARINT_BYTES = 9

HASH_READ_SIZE = 1_048_576

# Walker modes
MODE_MATERIALIZE = "materialize"
MODE_LIST_PATHS = "paths"
MODE_LIST_CIDS = "cids"
MODE_LIST_BOTH = "both"
WALK_MODES = (MODE_MATERIALIZE, MODE_LIST_PATHS, MODE_LIST_CIDS, MODE_LIST_BOTH)
