"""Custom exceptions for card-store.

This module defines typed exceptions so callers (the HTTP layer, the CLI)
can tell validation problems from conflicts and storage failures without
inspecting messages.
"""

from typing import List, Optional


class CardStoreError(RuntimeError):
    """Base class for all card-store errors."""
    pass


# Validation Errors
class ValidationError(CardStoreError):
    """Request rejected before touching the filesystem."""
    pass


class InvalidIdentifierError(ValidationError):
    """Client ID does not match the identifier rules."""

    def __init__(self, client_id: object):
        self.client_id = client_id
        super().__init__(
            f"Invalid client ID format: {client_id!r}. "
            "Use only letters, numbers, hyphens, and underscores (3-63 characters)"
        )


class MissingRequiredFieldError(ValidationError):
    """One or more required fields are absent or empty."""

    def __init__(self, fields: List[str]):
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(self.fields)}")


# Conflict Errors
class ConflictError(CardStoreError):
    """Operation not legal for the bundle's current existence state."""

    def __init__(self, client_id: str, message: str):
        self.client_id = client_id
        super().__init__(message)


class AlreadyExistsError(ConflictError):
    """Create called for an identifier that already has a bundle."""

    def __init__(self, client_id: str):
        super().__init__(
            client_id,
            f"Client ID '{client_id}' is already taken. Please choose a different one.",
        )


class NotFoundError(ConflictError):
    """Update or delete called for an identifier without a bundle."""

    def __init__(self, client_id: str):
        super().__init__(client_id, f"Client '{client_id}' not found")


# Payload Errors
class PayloadDecodeError(CardStoreError):
    """Encoded-binary payload could not be decoded."""

    def __init__(self, entry: Optional[str], reason: str):
        self.entry = entry
        self.reason = reason
        where = f" for '{entry}'" if entry else ""
        super().__init__(f"Malformed base64 payload{where}: {reason}")


# Storage Errors
class StorageIOError(CardStoreError):
    """Underlying filesystem operation failed."""

    def __init__(self, message: str, path: Optional[object] = None):
        self.path = path
        super().__init__(message)


class LockTimeoutError(StorageIOError):
    """Per-identifier lock could not be acquired in time."""

    def __init__(self, client_id: str, timeout: float):
        self.client_id = client_id
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s waiting for lock on '{client_id}'"
        )


# Configuration Errors
class ConfigError(CardStoreError):
    """Invalid or unreadable configuration."""
    pass
