"""Filesystem helpers shared by the backup and install steps."""

import os
import shutil
from pathlib import Path
from typing import Optional, Tuple

import structlog

logger = structlog.get_logger()


def is_empty_dir(path: Path) -> bool:
    """True if path is missing, not a directory, or has no entries."""
    if not path.is_dir():
        return True
    return not any(path.iterdir())


def clear_directory(path: Path) -> None:
    """Remove every entry inside path, keeping the directory itself."""
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def copy_contents(src: Path, dest: Path) -> None:
    """Copy the entries of src into dest, overwriting existing files."""
    dest.mkdir(parents=True, exist_ok=True)
    for child in src.iterdir():
        target = dest / child.name
        if child.is_dir() and not child.is_symlink():
            shutil.copytree(child, target, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(child, target, follow_symlinks=False)


def remove_path(path: Optional[Path]) -> bool:
    """Best-effort removal used by cleanup; returns True if something was removed."""
    if path is None or not (path.exists() or path.is_symlink()):
        return False
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True
    except OSError as e:
        logger.warning("Failed to remove path", path=str(path), error=str(e))
        return False


def _resolve_owner(user: str) -> Tuple[int, int]:
    import pwd

    entry = pwd.getpwnam(user)
    return entry.pw_uid, entry.pw_gid


def chown_tree(path: Path, user: Optional[str]) -> None:
    """Recursively hand ownership of path to user.

    No-op when user is unset, so unprivileged runs keep the files they create.

    Raises:
        KeyError: If the user does not exist
        PermissionError: If the process may not change ownership
    """
    if not user:
        return

    uid, gid = _resolve_owner(user)
    os.chown(path, uid, gid, follow_symlinks=False)
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            os.chown(os.path.join(root, name), uid, gid, follow_symlinks=False)
    logger.debug("Ownership reset", path=str(path), user=user)
