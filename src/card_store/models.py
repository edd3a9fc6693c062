"""Data models for card bundles.

``CardSpec`` is what callers send; ``WritePlan`` is the decoded, ordered list
of files a single create/update will write; ``BundleHandle`` is what they get
back.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .payload import Payload

# Fixed well-known file names inside a bundle
INDEX_FILE = "index.html"
STYLE_FILE = "style.min.css"
QR_SCRIPT_FILE = "qrcode.min.js"
MEDIA_DIR = "media"

EntryKind = Literal["text", "key", "image", "media"]


class CardSpec(BaseModel):
    """Files supplied for a bundle. Absent or empty fields are left alone."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    html: Optional[Payload] = None
    css: Optional[Payload] = None
    qr_script: Optional[Payload] = Field(None, alias="qrScript")
    vcard: Optional[Payload] = None
    public_key: Optional[Payload] = Field(None, alias="publicKey")
    full_name: Optional[str] = Field(None, alias="fullName")
    # Entries stay unvalidated here; the store checks each one and skips the bad ones
    images: Dict[str, Any] = Field(default_factory=dict)
    media: List[Any] = Field(default_factory=list)

    @field_validator("images", mode="before")
    @classmethod
    def _images_mapping(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else {}

    @field_validator("media", mode="before")
    @classmethod
    def _media_list(cls, v: Any) -> Any:
        return v if isinstance(v, (list, tuple)) else []


class SkippedEntry(BaseModel):
    """Optional entry dropped by the best-effort policy."""
    name: str
    reason: str


class BundleHandle(BaseModel):
    """Result of a successful create or update."""
    client_id: str
    path: Path
    written: List[str]
    skipped: List[SkippedEntry] = Field(default_factory=list)


@dataclass(frozen=True)
class FileWrite:
    """One decoded file, relative to the bundle directory."""
    name: str
    data: bytes
    kind: EntryKind = "text"


@dataclass
class WritePlan:
    """Ordered writes for one create/update call."""
    client_id: str
    writes: List[FileWrite] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)
    creates_media_dir: bool = False

    @property
    def names(self) -> List[str]:
        return [w.name for w in self.writes]
