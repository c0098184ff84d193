"""
Document store.

The only way the engine reads or writes a document. Every mutation goes
through one read-verify-write cycle:

    with store.locked():
        snapshot = store.load()          # fresh read, never cached
        ...verify against snapshot...
        store.commit(snapshot, new_text) # CAS check + atomic replace

`atomically(fn)` wraps that cycle for a single document. Operations that
must change two documents together hold both locks with `hold()`.
"""

import hashlib
import logging
import os
import shutil
import tempfile
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from stigmergy.lib.locking import LockTimeout, StoreError, acquire_lock, lock_path_for

logger = logging.getLogger(__name__)

__all__ = [
    "DocumentStore", "FileStore", "MemoryStore", "Snapshot",
    "StoreError", "LockTimeout", "WriteConflict", "hold",
]


class WriteConflict(StoreError):
    """The document changed between read and write."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} changed since it was read")


def digest_of(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Snapshot:
    text: str
    digest: str
    exists: bool = True


class DocumentStore:
    """Narrow interface over one document."""

    name: str = "document"

    def load(self) -> Snapshot:
        raise NotImplementedError

    def commit(self, snapshot: Snapshot, text: str) -> Snapshot:
        """Replace the document, provided it still matches snapshot.

        Callers must hold `locked()`.

        Raises:
            WriteConflict: if the document no longer matches snapshot
            StoreError: if the write fails (the old document stays in place)
        """
        raise NotImplementedError

    @contextmanager
    def locked(self):
        raise NotImplementedError
        yield

    def atomically(self, fn: Callable[[Snapshot], tuple[str | None, Any]]) -> Any:
        """Run one read-verify-write cycle under the store lock.

        fn receives a fresh snapshot and returns (new_text, result). A
        new_text of None (or unchanged text) skips the write. Returns result.
        """
        with self.locked():
            snapshot = self.load()
            new_text, result = fn(snapshot)
            if new_text is not None and new_text != snapshot.text:
                self.commit(snapshot, new_text)
            return result


class FileStore(DocumentStore):
    """A document on the local filesystem."""

    def __init__(self, path: Path, lock_timeout: float = 30):
        self.path = Path(path)
        self.lock_timeout = lock_timeout
        self.name = str(self.path)

    def _read(self) -> Snapshot:
        try:
            with open(self.path, encoding="utf-8", newline="") as f:
                text = f.read()
        except FileNotFoundError:
            return Snapshot(text="", digest=digest_of(""), exists=False)
        except OSError as e:
            raise StoreError(f"Cannot read {self.path}: {e}") from e
        return Snapshot(text=text, digest=digest_of(text))

    def load(self) -> Snapshot:
        return self._read()

    def commit(self, snapshot: Snapshot, text: str) -> Snapshot:
        current = self._read()
        if current.digest != snapshot.digest or current.exists != snapshot.exists:
            logger.warning(f"[STORE] {self.path.name} was modified outside the lock, refusing to overwrite")
            raise WriteConflict(self.name)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            if current.exists:
                shutil.copymode(self.path, tmp_name)
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise StoreError(f"Cannot write {self.path}: {e}") from e

        logger.debug(f"[STORE] Wrote {self.path.name} ({len(text)} chars)")
        return Snapshot(text=text, digest=digest_of(text))

    @contextmanager
    def locked(self):
        with acquire_lock(lock_path_for(self.path), self.lock_timeout, f"lock for {self.path.name}"):
            yield


class MemoryStore(DocumentStore):
    """In-memory document, for tests and dry runs."""

    def __init__(self, text: str | None = None, name: str = "memory"):
        self.name = name
        self._text = text
        self._lock = threading.Lock()
        self.writes = 0

    @property
    def text(self) -> str:
        return self._text or ""

    def load(self) -> Snapshot:
        if self._text is None:
            return Snapshot(text="", digest=digest_of(""), exists=False)
        return Snapshot(text=self._text, digest=digest_of(self._text))

    def commit(self, snapshot: Snapshot, text: str) -> Snapshot:
        if self.load() != snapshot:
            raise WriteConflict(self.name)
        self._text = text
        self.writes += 1
        return Snapshot(text=text, digest=digest_of(text))

    @contextmanager
    def locked(self):
        if not self._lock.acquire(timeout=30):
            raise LockTimeout(f"Could not acquire lock for {self.name}")
        try:
            yield
        finally:
            self._lock.release()


@contextmanager
def hold(*stores: DocumentStore):
    """Hold the locks of several stores, always taken in name order."""
    with ExitStack() as stack:
        for store in sorted(stores, key=lambda s: s.name):
            stack.enter_context(store.locked())
        yield
