"""Payload descriptors and decoding.

A file payload arrives either as plain text or as a descriptor carrying
base64-encoded bytes. ``decode_payload`` turns either shape into the exact
bytes to write; it knows nothing about where they end up.
"""

import base64
import binascii
from collections.abc import Mapping
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from .errors import PayloadDecodeError


class EncodedPayload(BaseModel):
    """Encoded-binary descriptor: ``{"base64": "..."}``."""
    model_config = ConfigDict(extra="ignore")

    base64: str


class ImagePayload(BaseModel):
    """Image entry; both fields are needed for the image to be stored."""
    model_config = ConfigDict(extra="ignore")

    base64: Optional[str] = None
    ext: Optional[str] = None


class MediaPayload(BaseModel):
    """Media entry stored under ``media/<filename>``."""
    model_config = ConfigDict(extra="ignore")

    filename: Optional[str] = None
    base64: Optional[str] = None


Payload = Union[str, EncodedPayload]


def decode_base64(text: str, entry: Optional[str] = None) -> bytes:
    """Strictly decode standard base64.

    Line breaks and other whitespace are dropped first (wrapped armor is
    common); anything else outside the base64 alphabet, or bad padding,
    raises PayloadDecodeError.
    """
    cleaned = "".join(text.split())
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PayloadDecodeError(entry, str(e)) from e


def decode_payload(value: object, entry: Optional[str] = None) -> bytes:
    """Convert a text or encoded-binary payload to raw bytes.

    Args:
        value: ``str``, ``EncodedPayload`` or a mapping with a ``base64`` key
        entry: Name used in error messages

    Returns:
        Bytes to persist

    Raises:
        PayloadDecodeError: If the base64 body is malformed or the value
            is neither shape
    """
    if isinstance(value, str):
        return value.encode("utf-8")

    if isinstance(value, (EncodedPayload, ImagePayload, MediaPayload)):
        encoded = value.base64
    elif isinstance(value, Mapping):
        encoded = value.get("base64")
    else:
        encoded = None

    if not isinstance(encoded, str):
        raise PayloadDecodeError(
            entry, f"expected text or a base64 descriptor, got {type(value).__name__}"
        )
    return decode_base64(encoded, entry)
