import logging
import os
import tempfile
import threading
from typing import Callable, Dict, Optional


class CacheEntryWriter:
    """
    Writes one cache entry through a temporary file.

    The entry's lock is held from creation until commit() or abort(), which
    call release exactly once. A failed write is logged and turns the
    remaining writes into no-ops; commit() then discards the partial file
    and the previous entry stays in place.
    """

    def __init__(self, path: str, release: Callable[[], None], logger: logging.Logger):
        self.path = path
        self.error: Optional[OSError] = None
        self._release = release
        self._logger = logger
        self._done = False

        directory = os.path.dirname(path) or "."
        os.makedirs(directory, mode=0o700, exist_ok=True)
        fd, self._temp_path = tempfile.mkstemp(
            dir=directory, prefix=".", suffix=".tmp")
        self._file = os.fdopen(fd, "wb")

    def write(self, data: bytes) -> int:
        if self.error is not None:
            return 0
        try:
            return self._file.write(data)
        except OSError as e:
            self._logger.error(f"Error writing cache entry {self.path}: {e}")
            self.error = e
            return 0

    def commit(self) -> bool:
        """
        Move the entry into place.

        Returns:
            True if the entry was stored
        """
        if self._done:
            return False
        if self.error is not None:
            self.abort()
            return False
        try:
            self._file.close()
            os.replace(self._temp_path, self.path)
        except OSError as e:
            self._logger.error(f"Error storing cache entry {self.path}: {e}")
            self.error = e
            self.abort()
            return False
        self._done = True
        self._release()
        self._logger.debug(f"Stored cache entry {self.path}")
        return True

    def abort(self) -> None:
        """Discard the partial entry."""
        if self._done:
            return
        try:
            self._file.close()
            if os.path.exists(self._temp_path):
                os.unlink(self._temp_path)
        except OSError as e:
            self._logger.error(f"Error discarding cache entry {self.path}: {e}")
        finally:
            self._done = True
            self._release()


class _KeyLock:
    """A lock and the number of writers holding or waiting for it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class FileCacheStore:
    """
    File system store for raw cached responses.

    Entries are addressed by file path. Writers of the same path are
    serialized, and every entry is written to a temporary file that is
    renamed into place, so readers only ever see complete entries. A key's
    lock only lives while some writer holds or waits for it.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._locks: Dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def active_locks(self) -> int:
        """Number of cache entries currently being written or waited for."""
        with self._locks_guard:
            return len(self._locks)

    def _acquire(self, path: str) -> str:
        key = os.path.abspath(path)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.holders += 1
        entry.lock.acquire()
        return key

    def _release(self, key: str) -> None:
        with self._locks_guard:
            entry = self._locks[key]
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]
        entry.lock.release()

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def read(self, path: str) -> Optional[bytes]:
        """
        Read a cache entry.

        Args:
            path: Cache file path

        Returns:
            The raw entry, or None if it is missing or unreadable
        """
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            self._logger.error(f"Error reading cache entry {path}: {e}")
            return None

    def open_entry(self, path: str) -> CacheEntryWriter:
        """
        Start writing a cache entry.

        Blocks while another writer holds the same entry.

        Raises:
            OSError: If the cache directory or file cannot be created
        """
        key = self._acquire(path)
        try:
            return CacheEntryWriter(path, lambda: self._release(key), self._logger)
        except BaseException:
            self._release(key)
            raise

    def write(self, path: str, data: bytes) -> bool:
        """Store a complete entry in one call."""
        entry = self.open_entry(path)
        entry.write(data)
        return entry.commit()


default_store = FileCacheStore()
