"""
Metadata service for managing image metadata in a flat JSON document.

The document maps stored filename to upload attributes:

    {
      "1700000000000-123456789.jpg": {
        "uploaderName": "Anonymous",
        "uploadDate": "2023-11-14T22:13:20.000Z",
        "originalName": "IMG_0001.HEIC"
      }
    }

Design:
- The document is held in an in-memory index that is reloaded whenever the
  file on disk changes, so the server sees entries added by a batch import
  running in another process.
- Every mutation holds a thread lock plus a sibling lock file, re-reads the
  document if another process changed it, and is flushed by writing a temp
  file and renaming it over the document.
- A document that cannot be parsed is moved aside instead of being silently
  overwritten by the next save.

Usage Examples:
    store = MetadataStore(Path("/app/images/metadata.json"))
    store.set("1700000000000-1.jpg", ImageMetadata.create_new("photo.jpg", "Ada"))
    entry = store.get("1700000000000-1.jpg")
    store.delete("1700000000000-1.jpg")
"""

import json
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..handlers.error import StorageError
from ..logging_config import get_logger, log_error
from ..models.image import ImageMetadata
from ..utils.lockfile import LockFile
from .storage import get_storage_service

logger = get_logger(__name__)

LOCK_TIMEOUT_SECONDS = 10.0
LOCK_STALE_SECONDS = 30.0


class MetadataStore:
    """
    Indexed filename → ImageMetadata mapping persisted as one JSON document.

    Thread Safety:
        All public methods are thread-safe. Writers in other processes are
        serialized through the ``.metadata.json.lock`` file.
    """

    def __init__(self, metadata_path: Path | str) -> None:
        """
        Load the metadata document.

        Args:
            metadata_path: Location of the JSON document
        """
        self.metadata_path = Path(metadata_path)
        self._lock = threading.RLock()
        self._index: dict[str, ImageMetadata] = {}
        self._signature: tuple[int, int, int] | None = None
        self._file_lock = LockFile(
            self.metadata_path.with_name(f".{self.metadata_path.name}.lock"), stale_seconds=LOCK_STALE_SECONDS
        )
        self._load()

    def _stat_signature(self) -> tuple[int, int, int] | None:
        try:
            stat = os.stat(self.metadata_path)
        except FileNotFoundError:
            return None
        return (stat.st_ino, stat.st_mtime_ns, stat.st_size)

    def _refresh(self) -> None:
        """Reload the index if another process replaced the document."""
        if self._stat_signature() != self._signature:
            self._load()

    def _load(self) -> None:
        """Populate the index from disk; a missing document means an empty store."""
        if not self.metadata_path.exists():
            logger.debug("metadata_document_missing", path=str(self.metadata_path))
            self._index = {}
            self._signature = None
            return

        try:
            with open(self.metadata_path, encoding="utf-8") as f:
                stat = os.fstat(f.fileno())
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError(f"expected a JSON object, got {type(raw).__name__}")
            index = {}
            for filename, entry in raw.items():
                if isinstance(entry, dict):
                    index[filename] = ImageMetadata.from_dict(entry)
                else:
                    logger.warning("metadata_entry_skipped", filename=filename)
            self._index = index
            self._signature = (stat.st_ino, stat.st_mtime_ns, stat.st_size)
            logger.info("metadata_loaded", path=str(self.metadata_path), entries=len(index))
        except OSError as e:
            raise StorageError(
                f"Failed to read metadata document: {e}",
                code="metadata_read_failed",
                details={"path": str(self.metadata_path)},
                original_exception=e,
            ) from e
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            quarantine = self.metadata_path.with_name(f"{self.metadata_path.name}.corrupt-{int(time.time() * 1000)}")
            log_error(e, {"operation": "load_metadata", "path": str(self.metadata_path), "moved_to": str(quarantine)})
            try:
                os.replace(self.metadata_path, quarantine)
            except OSError as move_error:
                raise StorageError(
                    f"Metadata document is corrupt and could not be moved aside: {move_error}",
                    code="metadata_corrupt",
                    details={"path": str(self.metadata_path)},
                    original_exception=move_error,
                ) from e
            self._index = {}
            self._signature = None

    def _flush(self) -> None:
        """Write the whole index through a temp file and rename it into place."""
        document = {filename: entry.to_dict() for filename, entry in self._index.items()}
        temp_path = self.metadata_path.with_name(f".{self.metadata_path.name}.{os.getpid()}.tmp")

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.metadata_path)
            self._signature = self._stat_signature()
        except OSError as e:
            try:
                temp_path.unlink()
            except OSError:
                pass
            raise StorageError(
                f"Failed to save metadata document: {e}",
                code="metadata_write_failed",
                details={"path": str(self.metadata_path), "entries": len(document)},
                original_exception=e,
            ) from e

        logger.debug("metadata_saved", path=str(self.metadata_path), entries=len(document))

    @contextmanager
    def _locked_document(self) -> Iterator[None]:
        """Hold the document lock file with an up-to-date index."""
        try:
            acquired = self._file_lock.acquire(timeout=LOCK_TIMEOUT_SECONDS)
        except OSError as e:
            raise StorageError(
                f"Failed to lock metadata document: {e}",
                code="metadata_write_failed",
                details={"path": str(self.metadata_path)},
                original_exception=e,
            ) from e
        if not acquired:
            raise StorageError(
                f"Timed out waiting for {self._file_lock.path}",
                code="metadata_locked",
                details={"path": str(self.metadata_path), "timeout_seconds": LOCK_TIMEOUT_SECONDS},
            )
        try:
            self._refresh()
            yield
        finally:
            self._file_lock.release()

    def get(self, filename: str) -> ImageMetadata | None:
        with self._lock:
            self._refresh()
            return self._index.get(filename)

    def set(self, filename: str, metadata: ImageMetadata) -> None:
        """
        Insert or replace the entry for ``filename`` and persist the store.

        The in-memory index is rolled back if the flush fails.

        Raises:
            StorageError: If the document cannot be written
        """
        with self._lock, self._locked_document():
            previous = self._index.get(filename)
            self._index[filename] = metadata
            try:
                self._flush()
            except StorageError:
                if previous is None:
                    self._index.pop(filename, None)
                else:
                    self._index[filename] = previous
                raise
        logger.info("metadata_saved_entry", filename=filename, uploader_name=metadata.uploader_name)

    def delete(self, filename: str) -> bool:
        """
        Remove the entry for ``filename``.

        Returns:
            bool: True if an entry existed and was removed
        """
        with self._lock, self._locked_document():
            previous = self._index.pop(filename, None)
            if previous is None:
                return False
            try:
                self._flush()
            except StorageError:
                self._index[filename] = previous
                raise
        logger.info("metadata_deleted_entry", filename=filename)
        return True

    def __contains__(self, filename: object) -> bool:
        with self._lock:
            self._refresh()
            return filename in self._index

    def __len__(self) -> int:
        with self._lock:
            self._refresh()
            return len(self._index)


# Global metadata stores, one per document path
_metadata_stores: dict[Path, MetadataStore] = {}
_metadata_stores_lock = threading.Lock()


def get_metadata_store(metadata_path: Path | str | None = None) -> MetadataStore:
    """
    Get or create the metadata store for a document.

    Args:
        metadata_path: Document location (defaults to the storage service's)

    Returns:
        MetadataStore: Shared store for that document
    """
    path = Path(metadata_path) if metadata_path is not None else get_storage_service().metadata_path
    with _metadata_stores_lock:
        store = _metadata_stores.get(path)
        if store is None:
            store = _metadata_stores[path] = MetadataStore(path)
        return store


def reset_metadata_stores() -> None:
    """Forget every cached store."""
    with _metadata_stores_lock:
        _metadata_stores.clear()
