"""
Cleanup: scoped ownership of scratch files.

A ScratchSpace hands out unique paths inside the shared scratch directory and
deletes every path it handed out when the `with` block exits, whether the
block returned or raised.
"""

import logging
from pathlib import Path

from studyscribe.core.security_utils import unique_path

logger = logging.getLogger(__name__)


def remove_file(path: Path) -> bool:
    """Delete a file if present. Returns False only when deletion failed."""
    try:
        path.unlink(missing_ok=True)
        return True
    except OSError as e:
        logger.warning("Failed to remove temp file %s: %s", path, e)
        return False


class ScratchSpace:
    """Tracks scratch files for one job and removes them on exit."""

    def __init__(self, scratch_dir: Path):
        self.scratch_dir = scratch_dir
        self._paths: list[Path] = []

    def __enter__(self) -> "ScratchSpace":
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    def new_path(self, suffix: str) -> Path:
        """Reserve a collision-free path; it is owed cleanup from now on."""
        path = unique_path(self.scratch_dir, suffix)
        self._paths.append(path)
        return path

    def cleanup(self):
        failed = [p for p in self._paths if not remove_file(p)]
        removed = len(self._paths) - len(failed)
        if removed:
            logger.debug("Removed %d scratch files from %s", removed, self.scratch_dir)
        self._paths = failed
