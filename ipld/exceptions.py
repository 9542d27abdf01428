"""
Content Addressing Exceptions

This module defines custom exceptions for CID parsing, block codecs
and content archive handling.
"""


class IPLDError(Exception):
    """Base exception for all content-addressing errors."""

    stage = "packaging"


class InvalidCIDError(IPLDError):
    """Raised when a CID string or byte sequence cannot be parsed."""
    pass


class CodecError(IPLDError):
    """Raised when a block cannot be encoded or decoded."""
    pass


class BlockNotFoundError(IPLDError):
    """Raised when a block is missing from a block store."""

    def __init__(self, cid):
        self.cid = cid
        super().__init__(f"block not found: {cid}")


class CarFormatError(IPLDError):
    """Raised when a CAR archive is malformed."""
    pass
