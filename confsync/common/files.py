"""
Durable File Helpers

Plain-text record storage used by the local cache tiers.

Writes go to a temp file in the target directory, are flushed and fsynced
under an exclusive lock (Unix), then atomically renamed over the target, so a
crash mid-write leaves either the old record or the new one, never a torn file.
"""

import os
import tempfile
import threading
from pathlib import Path

# Serializes writers inside this process; fcntl covers other processes
_write_lock = threading.Lock()


def read_text(path: Path, encoding: str = "utf-8") -> str | None:
    """
    Read a record.

    Returns:
        File content, or None if the file does not exist
    """
    try:
        with open(path, "r", encoding=encoding) as f:
            if os.name != "nt":
                import fcntl
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    return f.read()
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            return f.read()
    except FileNotFoundError:
        return None


def write_text_atomic(path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write a record atomically.

    Args:
        path: Target file (parent directories are created)
        content: Text to store
        encoding: Text encoding
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with _write_lock:
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding=encoding) as f:
                if os.name != "nt":
                    import fcntl
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                    try:
                        f.write(content)
                        f.flush()  # Ensure data is written
                        os.fsync(f.fileno())  # Force write to disk
                    finally:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                else:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
            # Atomic on the same filesystem
            temp_path.replace(path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise


def delete_file(path: Path) -> bool:
    """
    Delete a record.

    Returns:
        True if deleted, False if not found
    """
    with _write_lock:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False


def file_version(path: Path) -> float | None:
    """
    Modification time of a record.

    Returns:
        mtime in seconds, or None if not found
    """
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return None
