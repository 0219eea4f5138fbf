"""
Single-Instance Guard

One validation run per host. The lock marker is a file holding the PID of
its owner; a marker whose PID is no longer alive is left over from a crash
and gets reclaimed.
"""

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional, Union

from .errors import AlreadyRunningError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_FILE = Path("/tmp/validate-cloud-sync.lock")


def pid_alive(pid: int) -> bool:
    """True if a process with this PID exists"""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class ConcurrencyGuard:
    """
    Lock marker with explicit ownership.

    The recorded PID (holder) is compared with our own PID (pid); only the
    owner may remove the marker. Use as a context manager so release runs
    on every exit path.
    """

    def __init__(
        self,
        path: Union[str, Path] = DEFAULT_LOCK_FILE,
        pid: Optional[int] = None,
        is_alive: Optional[Callable[[int], bool]] = None,
        settle_delay_s: float = 0.2,
    ):
        self.path = Path(path)
        self.pid = pid if pid is not None else os.getpid()
        self.is_alive = is_alive or pid_alive
        # How long a marker with no readable PID is given to be written
        self.settle_delay_s = settle_delay_s
        self._held = False

    def __enter__(self) -> "ConcurrencyGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def held(self) -> bool:
        return self._held

    def holder(self) -> Optional[int]:
        """PID recorded in the marker, None if absent or unreadable"""
        try:
            raw = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read lock file {self.path}: {e}")
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def acquire(self) -> None:
        """Take the marker or raise AlreadyRunningError naming the live holder"""
        if self._try_create():
            self._held = True
            logger.debug(f"Lock acquired: {self.path} (PID {self.pid})")
            return

        holder = self.holder()
        if holder is None:
            # The owner may have created the marker but not yet written its PID
            time.sleep(self.settle_delay_s)
            holder = self.holder()
        if holder is not None and holder != self.pid and self.is_alive(holder):
            raise AlreadyRunningError(holder, str(self.path))

        if holder != self.pid:
            logger.warning(f"Stale lock file found (PID {holder}), reclaiming {self.path}")
        self._overwrite()
        self._held = True
        logger.debug(f"Lock acquired: {self.path} (PID {self.pid})")

    def release(self) -> None:
        """Remove the marker if, and only if, it still records our PID"""
        if not self._held:
            return
        self._held = False

        holder = self.holder()
        if holder != self.pid:
            logger.warning(
                f"Lock file {self.path} now belongs to PID {holder}, leaving it in place"
            )
            return
        try:
            self.path.unlink()
            logger.debug(f"Lock released: {self.path}")
        except FileNotFoundError:
            pass

    def _try_create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(f"{self.pid}\n")
        return True

    def _overwrite(self) -> None:
        fd, tmp = tempfile.mkstemp(prefix=".lock-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{self.pid}\n")
            os.chmod(tmp, 0o644)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
