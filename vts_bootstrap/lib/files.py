from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def write_file(path: str, contents: str, *, mode: int | None = None, dry_run: bool = False) -> None:
    p = Path(path)
    if dry_run:
        logger.info("Would write %s", str(p))
        return
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(contents, encoding="utf-8")
    if mode is not None:
        os.chmod(p, mode)
    logger.info("Wrote %s", str(p))


def append_file(path: str, contents: str, *, dry_run: bool = False) -> None:
    p = Path(path)
    if dry_run:
        logger.info("Would append to %s", str(p))
        return
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("a", encoding="utf-8") as f:
        f.write(contents)
    logger.info("Appended to %s", str(p))


def remove_path(path: str, *, dry_run: bool = False) -> None:
    """Remove a file or directory tree if it exists."""

    p = Path(path)
    if not (p.exists() or p.is_symlink()):
        return
    if dry_run:
        logger.info("Would remove %s", str(p))
        return
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
    else:
        p.unlink()
    logger.info("Removed %s", str(p))


def backup_file(path: str, backup: str, *, dry_run: bool = False) -> bool:
    p = Path(path)
    if not p.exists():
        return False
    if dry_run:
        logger.info("Would back up %s -> %s", str(p), backup)
        return True
    shutil.copy2(p, backup)
    logger.info("Backed up %s -> %s", str(p), backup)
    return True


def empty_dir(path: str, *, dry_run: bool = False) -> int:
    """Delete the contents of a directory, keeping the directory itself.

    Entries that cannot be removed (busy sockets, foreign mounts) are skipped.
    Returns the number of entries removed.
    """

    d = Path(path)
    if not d.is_dir():
        return 0
    removed = 0
    for child in d.iterdir():
        if dry_run:
            logger.info("Would remove %s", str(child))
            continue
        try:
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
            removed += 1
        except OSError as e:
            logger.debug("Could not remove %s: %s", str(child), e)
    return removed
