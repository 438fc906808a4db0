"""
Custom exceptions for the Syncable engine.
"""

from typing import Optional


class SyncException(Exception):
    """Base exception for all sync-related errors."""
    pass


class ConfigurationError(SyncException):
    """Error related to sync settings or model configuration."""
    pass


class SyncAuthenticationError(SyncException):
    """Missing, malformed or wrong API key. Never retried."""
    pass


class SyncDecryptionError(SyncException):
    """Ciphertext could not be authenticated or decoded."""
    pass


class SyncValidationError(SyncException):
    """Malformed payload, batch or operation."""
    pass


class SyncRequestError(SyncException):
    """The remote system answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class TransientTransportError(SyncRequestError):
    """Connection failure or remote 5xx. Safe to retry."""
    pass


class NoMappingError(SyncException):
    """No identity mapping exists for an incoming update or delete."""
    pass


class IdentityMappingError(SyncException):
    """A remote record is already mapped to a different local record."""
    pass
