"""
Upload Exceptions

This module defines exceptions raised while uploading content archives
to a storage backend.
"""

from typing import Optional


class UploadError(Exception):
    """Base exception for upload errors."""

    stage = "upload"


class NetworkError(UploadError):
    """Raised when a request fails in transport or is rejected by the backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class IntegrityError(UploadError):
    """Raised when the backend reports a different root CID than the one uploaded."""

    def __init__(self, expected: str, received: Optional[str]):
        super().__init__(f"root CID mismatch, expected: {expected}, received: {received}")
        self.expected = expected
        self.received = received


class UploadCancelledError(UploadError):
    """Raised when an upload is cancelled before all chunks are stored."""
    pass
