"""
Filesystem helpers for mirroring files between two trees.

Every helper raises the typed errors from ``core.errors`` instead of raw
``OSError`` so callers can match on ``NotFoundError`` and friends.
"""

import os
import shutil
import stat
from pathlib import Path
from typing import Optional

from core.errors import AlreadyExistsError, NotFoundError, translate_os_errors


def stat_or_none(path: Path) -> Optional[os.stat_result]:
    """Stat a path without following symlinks; None if it does not exist."""
    try:
        with translate_os_errors(path):
            return os.lstat(path)
    except NotFoundError:
        return None


def mkdir_if_missing(path: Path) -> bool:
    """Create a directory and its parents. Returns True if it was created."""
    st = stat_or_none(path)
    if st is not None:
        if stat.S_ISDIR(st.st_mode):
            return False
        raise AlreadyExistsError(f"{path} already exists, but is not a directory", path=str(path))

    with translate_os_errors(path):
        os.makedirs(path, exist_ok=True)
    return True


def is_same_file_state(src: os.stat_result, dst: os.stat_result) -> bool:
    """Size and modification time stand in for content equality."""
    return src.st_size == dst.st_size and src.st_mtime_ns == dst.st_mtime_ns


def copy_if_different(src: Path, dst: Path) -> bool:
    """
    Copy ``src`` to ``dst`` unless ``dst`` already has the same size and mtime.

    Access and modification times of the source are applied to the copy so
    the next comparison is stable. Returns True if the file was copied.

    Raises:
        NotFoundError: the source does not exist
    """
    with translate_os_errors(src):
        src_stat = os.stat(src)
    dst_stat = stat_or_none(dst)

    if dst_stat is not None and is_same_file_state(src_stat, dst_stat):
        return False

    mkdir_if_missing(dst.parent)
    with translate_os_errors(src):
        shutil.copyfile(src, dst)
    with translate_os_errors(dst):
        os.utime(dst, ns=(src_stat.st_atime_ns, src_stat.st_mtime_ns))
    return True


def remove_if_exists(path: Path) -> bool:
    """
    Remove a file or symlink. Returns True if something was removed.

    A missing path is not an error. Directories are left alone; they are
    cleaned up through the events of the files they contain.
    """
    st = stat_or_none(path)
    if st is None or stat.S_ISDIR(st.st_mode):
        return False

    try:
        with translate_os_errors(path):
            os.unlink(path)
    except NotFoundError:
        return False
    return True
