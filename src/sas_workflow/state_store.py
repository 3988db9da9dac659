from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from collections.abc import Callable
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# File locking helpers
# ---------------------------------------------------------------------------

_LOCK_SUFFIX = ".lock"


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Acquire an exclusive file lock for the duration of the context.

    Uses a separate .lock sidecar file so the document can be atomically
    replaced via ``os.replace`` without disturbing the lock handle.  Each
    entry opens its own handle, so the lock also excludes other threads of
    the same process.  Not re-entrant.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place so readers never observe a partial document.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# DocumentStore
# ---------------------------------------------------------------------------

class DocumentStore:
    """Whole-document storage for container files.

    Every call re-reads from disk; nothing is cached.  Mutations run the
    full read-transform-write cycle under the container's exclusive lock, so
    concurrent writers on the same container are serialized instead of
    losing updates.  Storage errors are logged and reported as ``None`` /
    ``False`` rather than raised.
    """

    def read(self, path: Path) -> str | None:
        """Return the document text, or None if it cannot be read."""
        try:
            with _locked_file(path):
                return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            logger.error("Failed to read container document %s", path, exc_info=True)
            return None

    def mutate(self, path: Path, transform: Callable[[str], str]) -> bool:
        """Apply ``transform`` to the document and persist the result.

        Args:
            path: Container document path.
            transform: Pure function from current text to new text.

        Returns:
            True if the document was written (or already matched), False on a
            storage failure, in which case the document is left unchanged.
        """
        try:
            with _locked_file(path):
                current = path.read_text(encoding="utf-8")
                updated = transform(current)
                if updated != current:
                    _atomic_write_text(path, updated)
        except (OSError, UnicodeDecodeError):
            logger.error("Failed to update container document %s", path, exc_info=True)
            return False
        return True

    def create_if_absent(self, path: Path, render: Callable[[], str]) -> bool:
        """Write ``render()`` to ``path`` unless a document already exists there.

        Returns:
            True if a new document was created, False if one already existed.

        Raises:
            OSError: If the directory or file cannot be created.
        """
        with _locked_file(path):
            if path.exists():
                return False
            _atomic_write_text(path, render())
            return True
