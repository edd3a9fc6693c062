"""Directory-per-client card store.

Each client identifier owns ``<root>/<client_id>/``; the directory's presence
is the only existence flag. The store enforces:

- create only from absent (exclusive ``mkdir``, so concurrent creates of the
  same identifier cannot both win)
- update and delete only from present
- one mutation at a time per identifier (see ``locks.IdentifierLocks``)
- a fixed write order: index.html, style, QR script, vCard, public key,
  images, media

Best-effort policy: an image or media entry that is malformed, incomplete, has
an unsafe filename (or an image name taken by a fixed entry) or a malformed
base64 body is skipped and reported in ``BundleHandle.skipped``; the rest of
the call proceeds. A malformed body on one of the fixed text entries aborts
the call before anything is written. Storage failures mid-sequence are raised
as-is with no rollback; retrying the same update (per-file overwrite) or
delete + create recovers.
"""

import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import (
    AlreadyExistsError,
    MissingRequiredFieldError,
    NotFoundError,
    PayloadDecodeError,
    StorageIOError,
)
from .fsutil import atomic_write_bytes, remove_tree, sanitize_display_name, unsafe_name_reason
from .identifiers import require_valid_client_id
from .locks import IdentifierLocks
from .models import (
    INDEX_FILE,
    MEDIA_DIR,
    QR_SCRIPT_FILE,
    STYLE_FILE,
    BundleHandle,
    CardSpec,
    FileWrite,
    SkippedEntry,
    WritePlan,
)
from .payload import ImagePayload, MediaPayload, decode_base64, decode_payload

logger = logging.getLogger(__name__)


def public_key_filename(client_id: str, full_name: Optional[str] = None) -> str:
    """Name of the armored public-key file, e.g. ``Jane Doe's public key.asc``."""
    display = sanitize_display_name(full_name) if full_name else ""
    return f"{display or client_id}'s public key.asc"


class CardStore:
    """Card bundles on a local filesystem.

    Attributes:
        root: Directory holding one subdirectory per client
        locks: Per-identifier lock registry

    Thread Safety:
        All mutating operations hold the identifier's lock; operations on
        different identifiers run in parallel.
    """

    def __init__(self, root: Path, lock_timeout: float = 30.0):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.locks = IdentifierLocks(self.root, timeout=lock_timeout)

    def bundle_path(self, client_id: str) -> Path:
        """Directory for ``client_id``.

        Raises:
            InvalidIdentifierError: If the identifier does not validate
        """
        return self.root / require_valid_client_id(client_id)

    def exists(self, client_id: str) -> bool:
        """True if a bundle directory exists for ``client_id``.

        Raises:
            InvalidIdentifierError: If the identifier does not validate
        """
        return self.bundle_path(client_id).is_dir()

    def list_bundles(self) -> List[str]:
        """Identifiers of all existing bundles, sorted."""
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_dir() and not p.name.startswith(".")
        )

    # === Planning (pure: decode and order, no filesystem access) ===

    def plan(self, client_id: str, spec: CardSpec) -> WritePlan:
        """Decode ``spec`` into the ordered list of files to write.

        Raises:
            InvalidIdentifierError: If the identifier does not validate
            PayloadDecodeError: If a fixed text entry has a malformed body
        """
        require_valid_client_id(client_id)
        plan = WritePlan(client_id=client_id)

        key_name = public_key_filename(client_id, spec.full_name)
        fixed = [
            (INDEX_FILE, spec.html),
            (STYLE_FILE, spec.css),
            (QR_SCRIPT_FILE, spec.qr_script),
            (f"{client_id}.vcf", spec.vcard),
        ]
        # Images may not shadow a fixed entry, whether or not it is in this call
        reserved = {name for name, _ in fixed} | {key_name}

        for name, value in fixed:
            if value:
                plan.writes.append(FileWrite(name, decode_payload(value, name)))

        if spec.public_key:
            plan.writes.append(FileWrite(key_name, decode_payload(spec.public_key, key_name), "key"))

        for key, raw in spec.images.items():
            try:
                image = ImagePayload.model_validate(raw)
            except PydanticValidationError:
                self._skip(plan, f"images.{key}", "expected an object with string base64 and ext")
                continue
            if not image.base64 or not image.ext:
                self._skip(plan, f"images.{key}", "both base64 and ext are required")
                continue
            name = f"{key}.{image.ext}"
            reason = unsafe_name_reason(name)
            if not reason and name in reserved:
                reason = f"would overwrite {name}"
            if reason:
                self._skip(plan, name, reason)
                continue
            try:
                data = decode_base64(image.base64, name)
            except PayloadDecodeError as e:
                self._skip(plan, name, e.reason)
                continue
            reserved.add(name)
            plan.writes.append(FileWrite(name, data, "image"))

        plan.creates_media_dir = bool(spec.media)
        for index, raw in enumerate(spec.media):
            try:
                item = MediaPayload.model_validate(raw)
            except PydanticValidationError:
                self._skip(plan, f"media[{index}]", "expected an object with string filename and base64")
                continue
            if not item.filename or not item.base64:
                self._skip(plan, f"media[{index}]", "both filename and base64 are required")
                continue
            reason = unsafe_name_reason(item.filename)
            if reason:
                self._skip(plan, f"media[{index}]", reason)
                continue
            name = f"{MEDIA_DIR}/{item.filename}"
            try:
                data = decode_base64(item.base64, name)
            except PayloadDecodeError as e:
                self._skip(plan, name, e.reason)
                continue
            plan.writes.append(FileWrite(name, data, "media"))

        return plan

    @staticmethod
    def _skip(plan: WritePlan, name: str, reason: str) -> None:
        logger.warning("Skipping %s for '%s': %s", name, plan.client_id, reason)
        plan.skipped.append(SkippedEntry(name=name, reason=reason))

    # === Mutations ===

    def create(self, client_id: str, spec: CardSpec) -> BundleHandle:
        """Create a new bundle.

        Raises:
            InvalidIdentifierError: If the identifier does not validate
            MissingRequiredFieldError: If ``html`` is absent or empty
            PayloadDecodeError: If a fixed text entry has a malformed body
            AlreadyExistsError: If the bundle directory already exists
            StorageIOError: If the filesystem fails (possibly mid-sequence)
        """
        require_valid_client_id(client_id)
        if not spec.html:
            raise MissingRequiredFieldError(["html"])
        plan = self.plan(client_id, spec)

        bundle_dir = self.root / client_id
        if bundle_dir.exists():
            raise AlreadyExistsError(client_id)
        with self.locks.hold(client_id):
            try:
                bundle_dir.mkdir(exist_ok=False)
            except FileExistsError:
                raise AlreadyExistsError(client_id) from None
            except OSError as e:
                raise StorageIOError(f"Could not create bundle directory: {e}", bundle_dir) from e

            logger.info("Created bundle %s", client_id)
            return self._apply(bundle_dir, plan)

    def update(self, client_id: str, spec: CardSpec) -> BundleHandle:
        """Overwrite or add the entries present in ``spec``.

        Raises:
            InvalidIdentifierError: If the identifier does not validate
            PayloadDecodeError: If a fixed text entry has a malformed body
            NotFoundError: If no bundle exists
            StorageIOError: If the filesystem fails (possibly mid-sequence)
        """
        plan = self.plan(client_id, spec)

        bundle_dir = self.root / client_id
        # Checked before locking too, so misses never create lock state
        if not bundle_dir.is_dir():
            raise NotFoundError(client_id)
        with self.locks.hold(client_id):
            if not bundle_dir.is_dir():
                raise NotFoundError(client_id)
            logger.info("Updating bundle %s", client_id)
            return self._apply(bundle_dir, plan)

    def delete(self, client_id: str) -> None:
        """Remove the bundle and everything under it.

        Raises:
            InvalidIdentifierError: If the identifier does not validate
            NotFoundError: If no bundle exists
            StorageIOError: If the filesystem fails
        """
        bundle_dir = self.bundle_path(client_id)
        if not bundle_dir.is_dir():
            raise NotFoundError(client_id)
        with self.locks.hold(client_id):
            if not bundle_dir.is_dir():
                raise NotFoundError(client_id)
            try:
                remove_tree(bundle_dir)
            except OSError as e:
                raise StorageIOError(f"Could not remove bundle: {e}", bundle_dir) from e
            logger.info("Deleted bundle %s", client_id)

    def _apply(self, bundle_dir: Path, plan: WritePlan) -> BundleHandle:
        """Write ``plan`` into ``bundle_dir`` in order. Caller holds the lock."""
        written: List[str] = []
        media_ready = False
        for write in plan.writes:
            target = bundle_dir / write.name
            try:
                if write.kind == "media" and not media_ready:
                    (bundle_dir / MEDIA_DIR).mkdir(exist_ok=True)
                    media_ready = True
                atomic_write_bytes(target, write.data)
            except OSError as e:
                logger.error(
                    "Write failed for '%s' after %d of %d files: %s",
                    plan.client_id, len(written), len(plan.writes), e,
                )
                raise StorageIOError(f"Could not write {write.name}: {e}", target) from e
            logger.debug("Wrote %s (%d bytes)", target, len(write.data))
            written.append(write.name)

        if plan.creates_media_dir and not media_ready:
            try:
                (bundle_dir / MEDIA_DIR).mkdir(exist_ok=True)
            except OSError as e:
                raise StorageIOError(f"Could not create media directory: {e}", bundle_dir) from e

        return BundleHandle(
            client_id=plan.client_id,
            path=bundle_dir,
            written=written,
            skipped=list(plan.skipped),
        )
