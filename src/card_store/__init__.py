"""Per-client card bundle store."""

from .errors import (
    AlreadyExistsError,
    CardStoreError,
    InvalidIdentifierError,
    MissingRequiredFieldError,
    NotFoundError,
    PayloadDecodeError,
    StorageIOError,
)
from .identifiers import is_valid_client_id
from .models import BundleHandle, CardSpec
from .payload import EncodedPayload, ImagePayload, MediaPayload, decode_payload
from .store import CardStore

__version__ = "0.1.0"

__all__ = [
    "AlreadyExistsError",
    "BundleHandle",
    "CardSpec",
    "CardStore",
    "CardStoreError",
    "EncodedPayload",
    "ImagePayload",
    "InvalidIdentifierError",
    "MediaPayload",
    "MissingRequiredFieldError",
    "NotFoundError",
    "PayloadDecodeError",
    "StorageIOError",
    "decode_payload",
    "is_valid_client_id",
]
