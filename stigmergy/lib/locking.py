"""
Advisory locks for the document store.

Uses flock on a sidecar `.lock` file next to each document. The lock only
serialises cooperating writers; an editor that ignores it is caught by the
store's compare-and-swap check instead.
"""

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


class StoreError(Exception):
    """Reading or writing the document store failed."""
    pass


class LockTimeout(StoreError):
    """Lock acquisition timed out."""
    pass


def lock_path_for(document: Path) -> Path:
    document = Path(document)
    return document.with_name(f".{document.name}.lock")


@contextmanager
def acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Acquire an exclusive flock, yield, release on exit.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for the lock
        lock_name: Human-readable name for error messages

    Note: lock files are never deleted. Deleting one lets two processes hold
    "exclusive" locks on different inodes with the same path.
    """
    lock_file = Path(lock_file)
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'w')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(POLL_INTERVAL)

    try:
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        logger.debug(f"[STORE] Acquired {lock_name}")
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()
        logger.debug(f"[STORE] Released {lock_name}")
