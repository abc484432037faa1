"""Series locking for tarchain.

The snapshot-state file of a series is shared mutable state: two backups of
the same series running at once would interleave their updates. SeriesLock
serialises runs with an fcntl.flock on a lock file placed beside the
snapshot state, recording the holder's PID.
"""

import fcntl
import os
import time
from pathlib import Path
from typing import Optional


class LockError(Exception):
    """Raised when a series lock cannot be acquired."""
    pass


class LockUnavailable(LockError):
    """Raised when the lock file cannot be created, e.g. on read-only media."""
    pass


class SeriesLock:
    """
    Exclusive lock on one backup series.

    flock locks die with their holder, so a crashed run never leaves a
    stale lock behind. Usable as a context manager.
    """

    POLL_INTERVAL = 0.1

    def __init__(self, lock_path: Path, timeout: float = 5):
        """
        Args:
            lock_path: Lock file, normally ``{snapshot}.lock``
            timeout: Seconds to keep retrying before giving up
        """
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Acquire the lock, polling until ``timeout`` expires.

        Raises:
            LockError: If another run still holds the lock at the deadline
            LockUnavailable: If the lock file cannot be created or opened
        """
        if self._fd is not None:
            return

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LockUnavailable(f"Cannot create lock directory {self.lock_path.parent}: {e}")
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
            except OSError as e:
                raise LockUnavailable(f"Cannot open lock file {self.lock_path}: {e}")

            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                if time.monotonic() >= deadline:
                    holder = self.holder_pid()
                    who = f"process {holder}" if holder else "another process"
                    raise LockError(
                        f"Series locked by {who} ({self.lock_path}) after {self.timeout}s"
                    )
                time.sleep(self.POLL_INTERVAL)
                continue

            # The previous holder unlinks the file on release; a lock taken
            # on the unlinked inode protects nothing
            if self._same_file(fd):
                break
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd

    def release(self) -> None:
        """Release the lock and remove the lock file."""
        if self._fd is None:
            return
        try:
            self.lock_path.unlink()
        except OSError:
            pass
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def is_locked(self) -> bool:
        """Check whether any process currently holds the lock."""
        if not self.lock_path.exists():
            return False
        try:
            fd = os.open(str(self.lock_path), os.O_RDONLY)
        except OSError:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        except BlockingIOError:
            return True
        finally:
            os.close(fd)

    def holder_pid(self) -> Optional[int]:
        """Return the PID recorded in the lock file, or None."""
        try:
            content = self.lock_path.read_text().strip()
            return int(content) if content else None
        except (OSError, ValueError):
            return None

    def _same_file(self, fd: int) -> bool:
        try:
            return os.fstat(fd).st_ino == os.stat(self.lock_path).st_ino
        except OSError:
            return False

    def __enter__(self) -> "SeriesLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False
