"""
DocumentStore interface for keyed, durable text documents.

Both the rolling memory store and the scratchpad store persist through this
interface: one whole document per key, loaded whole and replaced whole.
Keys are caller-built strings such as ``"alice/memory.json"``; the store
imposes no naming scheme beyond rejecting keys that would escape its root.

Two included implementations:
1. InMemoryDocumentStore - dict-backed, data lost on exit (tests, prototyping)
2. FileDocumentStore - one file per key under a base directory, written via
   temp file + atomic rename so readers never observe a partial document

Usage pattern:
    store = FileDocumentStore("lumen_data")
    await store.initialize()
    await store.save_document("alice/notes.md", text)
    text = await store.load_document("alice/notes.md")
    await store.close()
"""

import asyncio
import contextlib
import os
import stat
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, Optional, TextIO

from .logging_utils import log_deterministic

TEMP_SUFFIX = ".tmp"


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# Read once at import; os.umask cannot be queried without setting it.
_UMASK = _current_umask()


def _target_mode(path: Path) -> int:
    """Mode a rewritten document should carry: the existing file's, else the umask default."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return 0o666 & ~_UMASK


class PersistenceError(OSError):
    """Raised when a document cannot be read or durably written."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Document '{key}': {reason}")


def validate_key(key: str) -> str:
    """Return ``key`` unchanged or raise ``ValueError`` if it is unsafe.

    Keys are ``/``-separated segments; empty, ``.`` and ``..`` segments and
    backslashes are rejected so a key can never address a path outside the
    store root.
    """
    if not key or "\\" in key or "\x00" in key:
        raise ValueError(f"Invalid document key: {key!r}")
    for segment in key.split("/"):
        if segment in ("", ".", ".."):
            raise ValueError(f"Invalid document key: {key!r}")
    return key


@contextlib.contextmanager
def atomic_write(path: Path, *, encoding: str = "utf-8") -> Iterator[TextIO]:
    """Yield a handle to a temp file that replaces ``path`` on clean exit.

    The temp file lives in the destination directory so ``os.replace`` is an
    atomic rename. On any exception (including cancellation) the temp file is
    removed and ``path`` is left untouched.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=TEMP_SUFFIX
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, _target_mode(path))
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            tmp_path.unlink()
        raise


def stale_temp_files(path: Path) -> list[Path]:
    """Temp files a crashed writer left behind for ``path``."""
    if not path.parent.exists():
        return []
    return sorted(path.parent.glob(f".{path.name}.*{TEMP_SUFFIX}"))


class DocumentStore(ABC):
    """Abstract base class for keyed document storage.

    All methods are async: file and database backends do blocking I/O that
    must not stall other conversations running on the same event loop.
    """

    async def initialize(self) -> None:
        """Prepare the backend (create directories, open connections)."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return None

    @abstractmethod
    async def load_document(self, key: str) -> Optional[str]:
        """Return the stored document, or ``None`` when the key is absent."""

    @abstractmethod
    async def save_document(self, key: str, text: str) -> None:
        """Replace the document atomically.

        Readers observe either the previous complete document or the new
        complete document, never a mix.

        Raises:
            PersistenceError: If the write fails. The previous document is
                still intact.
        """

    @abstractmethod
    async def delete_document(self, key: str) -> None:
        """Remove the document if present."""


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store. Assignment of a whole string is already atomic."""

    def __init__(self) -> None:
        self.documents: Dict[str, str] = {}

    async def load_document(self, key: str) -> Optional[str]:
        return self.documents.get(validate_key(key))

    async def save_document(self, key: str, text: str) -> None:
        self.documents[validate_key(key)] = text

    async def delete_document(self, key: str) -> None:
        self.documents.pop(validate_key(key), None)


class FileDocumentStore(DocumentStore):
    """One UTF-8 file per key under ``base_path``.

    Directory structure:
    ```
    {base_path}/
      {conversation_id}/
        memory.json     # rolling memory aggregate
        notes.md        # scratchpad document
    ```

    Writes go through ``atomic_write``; stale temp files from an earlier
    crashed writer are swept after the next successful write of the same
    key. All file I/O runs in a worker thread (``asyncio.to_thread``).
    """

    def __init__(self, base_path: Path | str = "lumen_data"):
        self.base_path = Path(base_path)

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def load_document(self, key: str) -> Optional[str]:
        path = self._path(key)

        def _read() -> Optional[str]:
            try:
                return path.read_text("utf-8")
            except FileNotFoundError:
                return None

        try:
            return await asyncio.to_thread(_read)
        except OSError as exc:
            raise PersistenceError(key, f"read failed: {exc}") from exc

    async def save_document(self, key: str, text: str) -> None:
        path = self._path(key)

        def _write() -> int:
            with atomic_write(path) as handle:
                handle.write(text)
            swept = 0
            for stale in stale_temp_files(path):
                with contextlib.suppress(FileNotFoundError):
                    stale.unlink()
                    swept += 1
            return swept

        try:
            swept = await asyncio.to_thread(_write)
        except OSError as exc:
            raise PersistenceError(key, f"write failed: {exc}") from exc

        if swept:
            log_deterministic(f"[Store] Removed {swept} stale temp file(s) for {key}")

    async def delete_document(self, key: str) -> None:
        path = self._path(key)

        def _delete() -> None:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()

        await asyncio.to_thread(_delete)

    def _path(self, key: str) -> Path:
        return self.base_path.joinpath(*validate_key(key).split("/"))


__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "FileDocumentStore",
    "PersistenceError",
    "atomic_write",
    "stale_temp_files",
    "validate_key",
]
