"""Error kinds raised by the storage core.

Each kind carries a stable ``code`` and the HTTP status the server maps it to.
``public_message`` is what clients see; it must never contain filesystem paths.
Internal detail belongs in the exception chain and the logs.
"""
from __future__ import annotations


class SitedropError(Exception):
    code = "Error"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, public_message: str | None = None) -> None:
        self.public_message = public_message or self.default_message
        super().__init__(self.public_message)


class InvalidInput(SitedropError, ValueError):
    code = "InvalidInput"
    status_code = 400
    default_message = "Invalid input"


class AlreadyExists(SitedropError):
    code = "AlreadyExists"
    status_code = 409
    default_message = "Project already exists"


class NotFound(SitedropError, LookupError):
    code = "NotFound"
    status_code = 404
    default_message = "Project does not exist"


class PathTraversal(SitedropError, ValueError):
    code = "PathTraversal"
    status_code = 400
    default_message = "Unsafe path"


class ArchiveTooLarge(SitedropError):
    code = "ArchiveTooLarge"
    status_code = 413
    default_message = "Archive exceeds extraction limits"


class UploadTooLarge(SitedropError):
    code = "UploadTooLarge"
    status_code = 413
    default_message = "File too large"


class IOFailure(SitedropError):
    code = "IOFailure"
    status_code = 500
    default_message = "Storage error"


class ExtractionCancelled(SitedropError):
    code = "ExtractionCancelled"
    status_code = 499
    default_message = "Extraction cancelled"


class StorageInitError(SitedropError):
    """The storage root could not be prepared. Fatal at startup."""

    code = "StorageInitError"
    default_message = "Storage root could not be initialized"
