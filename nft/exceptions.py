"""
NFT Packaging Exceptions

This module defines exceptions raised while validating metadata,
packaging NFTs and building bundles.
"""


class NFTError(Exception):
    """Base exception for NFT packaging errors."""

    stage = "packaging"


class MetadataValidationError(NFTError):
    """Raised when metadata does not match the Metaplex schema."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class CapacityError(NFTError):
    """Raised when a bundle ceiling would be exceeded."""

    def __init__(self, message: str, limit: int):
        super().__init__(message)
        self.limit = limit


class DuplicateIdentifierError(NFTError):
    """Raised when a bundle already holds an entry with the given id."""

    def __init__(self, identifier: str):
        super().__init__(f"bundle already contains an entry with id {identifier!r}")
        self.identifier = identifier


class InvalidIdentifierError(NFTError):
    """Raised when a bundle id cannot be used as a directory entry name."""
    pass


class NFTLoadError(NFTError):
    """Raised when an NFT cannot be loaded from the filesystem."""
    pass
