"""
Disk usage and directory removal helpers.
"""

import os
import shutil
from pathlib import Path

from .config import log


def human_size(n) -> str:
    for unit in ["B", "KB", "MB", "GB", "TB", "PB"]:
        if n < 1024:
            return f"{n:.2f}{unit}"
        n /= 1024
    return f"{n:.2f}EB"


def size_of_path(path) -> int:
    """Recursive size in bytes. Missing paths count as 0; unreadable files are skipped."""
    if not path:
        return 0
    path = Path(path)
    if not path.exists():
        return 0
    if path.is_file():
        try:
            return path.stat().st_size
        except OSError:
            return 0
    total = 0
    for root, _dirs, files in os.walk(path):
        for f in files:
            fp = Path(root) / f
            try:
                if not fp.is_symlink():
                    total += fp.stat().st_size
            except OSError:
                continue
    return total


def remove_tree(path) -> None:
    """
    Delete a directory tree, attempting every entry.
    Raises OSError listing the first failures if anything was left behind.
    """
    path = Path(path)
    if not path.exists():
        return

    errors = []

    def onexc(func, path_str, exc):
        # Read-only files (common under AppData) need the bit cleared first
        try:
            os.chmod(path_str, 0o700)
            func(path_str)
        except OSError as e:
            errors.append((path_str, e))

    shutil.rmtree(path, onexc=onexc)
    if errors:
        for path_str, e in errors[:5]:
            log.warning("Could not delete %s: %s", path_str, e)
        raise OSError(f"{len(errors)} entries under {path} could not be deleted")
