"""Filesystem helpers: crash-safe writes, filename safety, tree removal.

Technical Considerations:
- Every file lands via temp file + fsync + ``os.replace`` so an interrupted
  write leaves either the old file or the new one, never a torn one
- Directory fsync is best-effort (not supported on Windows and some filesystems)
- Caller-supplied names must be a single path component; anything that could
  climb out of the bundle directory is refused
"""

import contextlib
import logging
import os
import shutil
import sys
import tempfile
import unicodedata
from pathlib import Path

logger = logging.getLogger(__name__)

# UTF-8 bytes; leaves room for "'s public key.asc" under NAME_MAX
MAX_DISPLAY_NAME = 200
MAX_NAME_BYTES = 255

# Fixed and short so the temp name fits wherever the final name fits
TEMP_PREFIX = ".tmp-"


def _fsync_dir(path: Path) -> None:
    """Fsync a directory so a rename inside it is durable (best-effort)."""
    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY

        fd = os.open(str(path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", path)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Atomically replace ``path`` with ``data``.

    The parent directory must already exist; bundle directories are created
    explicitly by the store so a write never resurrects a deleted bundle.

    Args:
        path: Target file path
        data: Bytes to write
    """
    with tempfile.NamedTemporaryFile(
        mode="wb",
        delete=False,
        dir=path.parent,
        prefix=TEMP_PREFIX,
    ) as f:
        tmp = Path(f.name)
        try:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        except BaseException:
            f.close()
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise

    try:
        # NamedTemporaryFile creates 0o600; published files must be world-readable
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise

    _fsync_dir(path.parent)


def unsafe_name_reason(name: str) -> str:
    """Return why ``name`` is not a safe single path component, or "" if it is."""
    if not name or not name.strip():
        return "empty filename"
    if name in (".", ".."):
        return f"unsafe filename: {name!r}"
    if "/" in name or "\\" in name:
        return f"path separators not allowed: {name!r}"
    if any(unicodedata.category(ch) == "Cc" for ch in name):
        return f"control characters not allowed: {name!r}"
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        return "filename too long"
    return ""


def safe_child(root: Path, name: str) -> Path:
    """Join ``name`` onto ``root`` after checking it is a safe component.

    Raises:
        ValueError: If the name is unsafe
    """
    reason = unsafe_name_reason(name)
    if reason:
        raise ValueError(f"Unsafe path in bundle: {reason}")
    return root / name


def sanitize_display_name(value: str) -> str:
    """Make free text usable inside a filename.

    Control characters are dropped, path separators become ``-``, leading
    dots and surrounding whitespace are stripped, and the result is cut to
    ``MAX_DISPLAY_NAME`` UTF-8 bytes without splitting a character. May
    return "".
    """
    cleaned = "".join(
        "-" if ch in "/\\" else ch
        for ch in value
        if unicodedata.category(ch) != "Cc"
    )
    cleaned = cleaned.strip().lstrip(".").strip()
    truncated = cleaned.encode("utf-8")[:MAX_DISPLAY_NAME].decode("utf-8", errors="ignore")
    return truncated.rstrip()


def _ignore_missing(func, path, exc) -> None:
    exc_value = exc[1] if isinstance(exc, tuple) else exc
    if isinstance(exc_value, FileNotFoundError):
        logger.debug("Already gone during removal: %s", path)
        return
    raise exc_value


def remove_tree(path: Path) -> None:
    """Recursively remove ``path``; entries that vanish mid-walk are ignored."""
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_ignore_missing)
    else:
        shutil.rmtree(path, onerror=_ignore_missing)
