"""
Cryptographic Exceptions

This module defines custom exceptions for key handling, auth context
construction and upload token issuance.
"""


class CryptoError(Exception):
    """Base exception for all token issuance errors."""

    stage = "issuance"


class ConfigurationError(CryptoError):
    """Raised when an AuthContext is missing required settings."""
    pass


class InvalidKeyError(CryptoError):
    """Raised when a key is invalid or malformed."""
    pass


class SigningError(CryptoError):
    """Raised when the signing capability fails to produce a signature."""
    pass


class InvalidTokenError(CryptoError):
    """Raised when an upload token cannot be decoded or verified."""
    pass
