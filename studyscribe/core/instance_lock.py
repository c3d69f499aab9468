"""
Cross-process coordination on one database.

Every running pipeline holds a shared flock on `<db_path>.lock` for its
lifetime. Startup recovery needs the exclusive lock: if any other process
still holds its shared lock, rows it is working on are not stale and
recovery is skipped.
"""

import fcntl
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def lock_path_for(db_path: Path) -> Path:
    db_path = Path(db_path)
    return db_path.with_name(db_path.name + ".lock")


class InstanceLock:

    def __init__(self, path: Path):
        self.path = Path(path)
        self._handle = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire_shared(self):
        if self._handle is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.path, "a+")
        fcntl.flock(self._handle.fileno(), fcntl.LOCK_SH)
        logger.debug("Holding shared instance lock %s", self.path)

    def try_exclusive(self) -> bool:
        """
        Upgrade to exclusive without blocking. On failure the shared lock is
        taken again, since flock drops the old lock before converting.
        """
        self.acquire_shared()
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_SH)
            return False
        return True

    def downgrade(self):
        if self._handle is not None:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_SH)

    def release(self):
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
