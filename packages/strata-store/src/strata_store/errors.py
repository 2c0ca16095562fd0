"""Custom exceptions for strata-store.

This module defines the exception hierarchy:
- StoreError (base)
- TransientStoreError (retryable)
- ArtifactNotFoundError
- SignatureError
"""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for all artifact store operations.

    Attributes:
        message: Human-readable error description.
        details: Optional additional context about the error.

    Example:
        >>> try:
        ...     store.put("run/templates/a.json", data)
        ... except StoreError as e:
        ...     print(f"Store error: {e}")
    """

    def __init__(self, message: str, *, details: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details if present."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class TransientStoreError(StoreError):
    """A store operation failed in a way that may succeed on retry.

    Raised when:
    - The backend is temporarily unavailable or throttling
    - The stored checksum does not match the uploaded bytes
    """


class ArtifactNotFoundError(StoreError):
    """The requested location does not exist in the store."""

    def __init__(self, location: str) -> None:
        super().__init__("Artifact not found", details={"location": location})
        self.location = location


class SignatureError(StoreError):
    """A signed access URL is malformed, tampered with or expired.

    The signature itself is never included in the message.
    """

    def __init__(self, message: str = "Invalid access signature", *, location: str = "") -> None:
        details = {"location": location} if location else None
        super().__init__(message, details=details)
        self.location = location
