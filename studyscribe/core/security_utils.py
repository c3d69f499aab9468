"""
Security utilities for studyscribe.
- Safe subprocess execution (argument arrays only)
- Path containment checks for artifact deletion
- Collision-free file names in shared directories
"""

import subprocess
import pathlib
import uuid
import logging

logger = logging.getLogger(__name__)


# ── Filename / path safety ────────────────────────────────────────────

def unique_path(directory: pathlib.Path, suffix: str) -> pathlib.Path:
    """Return a fresh uuid-named path in `directory` (not created)."""
    if suffix and not suffix.startswith('.'):
        suffix = '.' + suffix
    return directory / f"{uuid.uuid4()}{suffix}"


def is_within_directory(root: pathlib.Path, candidate: pathlib.Path) -> bool:
    """True if realpath(candidate) lies under realpath(root)."""
    try:
        real_root = root.resolve(strict=False)
        real_candidate = candidate.resolve(strict=False)
    except OSError:
        return False
    return real_candidate == real_root or real_root in real_candidate.parents


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )
