"""Per-identifier locking.

Two layers, taken in order:
1. A ``threading.Lock`` per identifier so threads of one server process
   queue up without polling
2. A ``portalocker`` file lock so separate processes sharing the same root
   (several workers, the CLI next to the server) also serialize

Lock files live in ``<root>/.locks/`` and persist; removing them while another
process holds one would let two holders coordinate on different inodes.
"""

import contextlib
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator

import portalocker

from .errors import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_DIR = ".locks"


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class IdentifierLocks:
    """Mutual exclusion keyed by client identifier.

    Different identifiers never contend with each other. In-process entries
    are reference counted and dropped once no thread holds or waits on them.
    """

    def __init__(self, root: Path, timeout: float = 30.0):
        self.lock_dir = Path(root) / LOCK_DIR
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, _Entry] = {}

    def _checkout(self, client_id: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(client_id)
            if entry is None:
                entry = self._locks[client_id] = _Entry()
            entry.users += 1
            return entry.lock

    def _checkin(self, client_id: str) -> None:
        with self._guard:
            entry = self._locks[client_id]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[client_id]

    def active_count(self) -> int:
        """Number of identifiers currently held or waited on in this process."""
        with self._guard:
            return len(self._locks)

    def lock_path(self, client_id: str) -> Path:
        return self.lock_dir / f"{client_id}.lock"

    @contextlib.contextmanager
    def hold(self, client_id: str) -> Iterator[None]:
        """Hold the lock for ``client_id`` for the duration of the block.

        Raises:
            LockTimeoutError: If either lock is not acquired within ``timeout``
        """
        thread_lock = self._checkout(client_id)
        try:
            if not thread_lock.acquire(timeout=self.timeout):
                raise LockTimeoutError(client_id, self.timeout)
            try:
                try:
                    file_lock = portalocker.Lock(
                        str(self.lock_path(client_id)), "a", timeout=self.timeout
                    )
                    file_lock.acquire()
                except portalocker.LockException as e:
                    raise LockTimeoutError(client_id, self.timeout) from e
                try:
                    logger.debug("Lock acquired: %s", client_id)
                    yield
                finally:
                    file_lock.release()
            finally:
                thread_lock.release()
        finally:
            self._checkin(client_id)
