"""Single-owner lock for the sessions directory.

Two daemons sharing one sessions directory would each open a transport
for the same session IDs. A PID file held under an exclusive fcntl lock
keeps that from happening.
"""

import fcntl
import os
from pathlib import Path
from typing import Optional


class DaemonAlreadyRunningError(Exception):
    """Another daemon holds the lock."""

    def __init__(self, pid: Optional[int] = None):
        self.pid = pid
        if pid:
            super().__init__(f"Daemon already running with PID {pid}")
        else:
            super().__init__("Daemon already running")


class DaemonLock:
    """PID lock file.

    Usage:
        with DaemonLock(Path("~/.config/paird/daemon.lock")):
            ...  # daemon runs
    """

    def __init__(self, lock_file: Path):
        self._lock_file = Path(lock_file).expanduser()
        self._fd: Optional[int] = None

    @property
    def path(self) -> Path:
        return self._lock_file

    def is_held(self) -> bool:
        """True if this instance holds the lock."""
        return self._fd is not None

    def acquire(self) -> None:
        """Take the lock and record our PID.

        Stale files left by crashed daemons are taken over.

        Raises:
            DaemonAlreadyRunningError: If a live process holds the lock.
        """
        if self._fd is not None:
            return

        owner = self.get_owner_pid()
        if owner is not None and owner != os.getpid() and pid_alive(owner):
            raise DaemonAlreadyRunningError(owner)

        self._lock_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self._lock_file), os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise DaemonAlreadyRunningError() from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise DaemonAlreadyRunningError(self.get_owner_pid())

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        os.fsync(fd)
        os.chmod(self._lock_file, 0o600)
        self._fd = fd

    def release(self) -> None:
        """Drop the lock and delete the file. Safe to call repeatedly."""
        fd = self._fd
        self._fd = None
        if fd is None:
            return

        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError:
            pass
        try:
            os.close(fd)
        except OSError:
            pass

        try:
            self._lock_file.unlink()
        except FileNotFoundError:
            pass

    def get_owner_pid(self) -> Optional[int]:
        """PID recorded in the lock file, or None."""
        try:
            return int(self._lock_file.read_text().strip())
        except (OSError, ValueError):
            return None

    def __enter__(self) -> "DaemonLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def pid_alive(pid: int) -> bool:
    try:
        # Signal 0 only checks for existence
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
