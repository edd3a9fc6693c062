"""Client identifier validation."""

import re

from .errors import InvalidIdentifierError

MIN_LENGTH = 3
MAX_LENGTH = 63

_CLIENT_ID = re.compile(r"^[a-z0-9]([a-z0-9_-]{0,61}[a-z0-9])?$", re.IGNORECASE | re.ASCII)


def is_valid_client_id(value: object) -> bool:
    """Return True if ``value`` is a usable client identifier.

    Alphanumeric first and last character, interior characters alphanumeric,
    hyphen or underscore, 3-63 characters in total. Case-insensitive.
    """
    if not isinstance(value, str):
        return False
    if not MIN_LENGTH <= len(value) <= MAX_LENGTH:
        return False
    # fullmatch so a trailing newline cannot sneak past "$"
    return _CLIENT_ID.fullmatch(value) is not None


def require_valid_client_id(value: object) -> str:
    """Return ``value`` unchanged or raise InvalidIdentifierError."""
    if not is_valid_client_id(value):
        raise InvalidIdentifierError(value)
    return value  # type: ignore[return-value]
