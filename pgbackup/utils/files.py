"""
Local artifact handling: scratch directory setup and secure deletion.
"""

import os
import logging


logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


def ensure_private_dir(path: str) -> str:
    """
    Create a directory readable only by the current user.

    Permissions are reset to 0700 even if the directory already existed.
    """
    os.makedirs(path, mode=0o700, exist_ok=True)
    os.chmod(path, 0o700)
    return path


def _overwrite(path: str, size: int, random_data: bool):
    with open(path, 'r+b') as f:
        remaining = size
        while remaining > 0:
            chunk = min(_CHUNK_SIZE, remaining)
            f.write(os.urandom(chunk) if random_data else b'\0' * chunk)
            remaining -= chunk
        f.flush()
        os.fsync(f.fileno())


def secure_delete(path: str) -> bool:
    """
    Overwrite a file with one random pass and one zero pass, then unlink it.

    Copy-on-write and journaling filesystems may keep old blocks around, so
    this is best effort. If the overwrite fails the file is still removed.

    Args:
        path: File to delete

    Returns:
        True if the file was overwritten before removal, False if it was only
        unlinked (or did not exist)
    """
    if not os.path.exists(path):
        return False

    overwritten = False
    try:
        size = os.path.getsize(path)
        _overwrite(path, size, random_data=True)
        _overwrite(path, size, random_data=False)
        overwritten = True
    except OSError as e:
        logger.warning(f"Secure erase failed for {path}, falling back to plain delete: {e}")

    remove_file(path)
    return overwritten


def remove_file(path: str):
    """Delete a file, ignoring one that is already gone."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
