"""Removes stale Chromium single-instance locks from session directories.

A browser that crashed or was killed leaves ``Singleton*`` entries in its
profile directory. The next launch sees them and refuses to start, so they
are removed before every connection attempt.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_MARKERS = frozenset({"SingletonLock", "SingletonSocket", "SingletonCookie"})


def _remove(path: Path) -> None:
    # SingletonLock is usually a dangling symlink, so check links first
    if path.is_symlink() or not path.is_dir():
        path.unlink()
    else:
        shutil.rmtree(path)


def clean_locks(directory: str | Path) -> list[Path]:
    """Delete lock markers anywhere under ``directory``.

    Creates the directory when it does not exist. Directory symlinks are not
    followed. A lock that cannot be removed is logged and skipped.

    Returns:
        Paths that were removed.
    """
    root = Path(directory)
    if not root.exists():
        root.mkdir(parents=True, exist_ok=True)
        logger.debug("Created session directory %s", root)
        return []

    removed: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        for name in [*filenames, *dirnames]:
            if name not in LOCK_MARKERS:
                continue
            path = Path(dirpath) / name
            try:
                _remove(path)
            except OSError as exc:
                logger.warning("Could not remove lock %s: %s", path, exc)
                continue
            removed.append(path)
            logger.info("Removed stale lock %s", path)
        # Removed marker directories must not be walked into
        dirnames[:] = [d for d in dirnames if d not in LOCK_MARKERS]

    return removed
