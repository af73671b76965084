class CarError(Exception):
    """Base class for carpack-specific errors."""


class CarIOError(CarError, OSError):
    """Read/write failure on an external byte source or sink."""


# Framing/header
class FormatError(CarError):
    pass


class HeaderError(FormatError):
    pass


class UnsupportedVersionError(FormatError):
    pass


class TruncatedFrameError(FormatError):
    pass


class FrameSizeError(FormatError):
    pass


class NodeDecodeError(FormatError):
    pass


# Content integrity
class IntegrityError(CarError):
    pass


class CIDMismatchError(IntegrityError):
    pass


class MissingBlockError(IntegrityError):
    pass


# Caller input
class ConstraintError(CarError, ValueError):
    pass


class CollisionError(ConstraintError, CarIOError):
    """Materialize target already exists."""
