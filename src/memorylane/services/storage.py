"""Storage service for the local image directory."""

import mimetypes
import os
import secrets
import threading
import time
import weakref
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

from ..config import get_images_dir
from ..handlers.error import ErrorStage, NotFoundError, StorageError, ValidationError
from ..logging_config import get_logger
from ..models.image import StoredImage, is_thumbnail_filename

logger = get_logger(__name__)

METADATA_FILENAME = "metadata.json"
ROTATION_TEMP_SUFFIX = ".temp"
CHUNK_SIZE = 1024 * 1024


class FilenameLock:
    """A per-filename mutex; weakly referenced by the service so idle ones are dropped."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self) -> "FilenameLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()


SUPPORTED_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".tiff", ".tif", ".bmp", ".ico", ".heic", ".heif"}
)

# Extension used when only the MIME type vouched for the upload
MIME_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "image/tiff": ".tiff",
    "image/bmp": ".bmp",
    "image/ico": ".ico",
    "image/x-icon": ".ico",
    "image/vnd.microsoft.icon": ".ico",
    "image/heic": ".heic",
    "image/heif": ".heif",
}


def file_created_at(path: Path) -> datetime:
    """Filesystem birth time where the platform records it, otherwise ctime."""
    stat = path.stat()
    timestamp = getattr(stat, "st_birthtime", None) or stat.st_ctime
    return datetime.fromtimestamp(timestamp, UTC)


def is_safe_filename(filename: str) -> bool:
    """A plain basename: no separators, no traversal, no hidden files."""
    if not filename or filename in {".", ".."} or filename.startswith("."):
        return False
    if "/" in filename or "\\" in filename or "\x00" in filename:
        return False
    return Path(filename).name == filename


class StorageService:
    """Service for the shared image directory.

    Owns naming of new uploads, enumeration of originals, atomic replacement
    and per-filename locking. It knows nothing about image codecs.
    """

    def __init__(self, images_dir: Path | str | None = None) -> None:
        """
        Initialize the storage service.

        Args:
            images_dir: Image directory (defaults to IMAGES_DIR)
        """
        self.images_dir = Path(images_dir) if images_dir is not None else get_images_dir()
        self._locks: weakref.WeakValueDictionary[str, FilenameLock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

        try:
            self.images_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create image directory {self.images_dir}: {e}", original_exception=e
            ) from e

        logger.info("storage_service_initialized", images_dir=str(self.images_dir))

    @property
    def metadata_path(self) -> Path:
        return self.images_dir / METADATA_FILENAME

    def image(self, filename: str) -> StoredImage:
        return StoredImage(filename=filename, path=self.images_dir / filename)

    def generate_filename(self, original_name: str, content_type: str | None = None) -> str:
        """
        Generate a storage name from the current time and a random component.

        The client name only contributes its extension, and only when that
        extension is on the allowlist; otherwise the MIME type decides.

        Args:
            original_name: Client-provided filename
            content_type: Declared MIME type

        Returns:
            str: New filename such as ``1700000000000-123456789.jpg``
        """
        extension = Path(original_name or "").suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS:
            mime = (content_type or "").split(";")[0].strip().lower()
            extension = MIME_TYPE_EXTENSIONS.get(mime) or mimetypes.guess_extension(mime) or ""
            if extension not in SUPPORTED_EXTENSIONS:
                extension = ".jpg"
        return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{extension}"

    def persist_upload(
        self,
        stream: BinaryIO,
        original_name: str,
        content_type: str | None = None,
        max_size: int | None = None,
    ) -> StoredImage:
        """
        Write an uploaded stream to a freshly generated filename.

        Args:
            stream: Readable binary stream with the upload body
            original_name: Client-provided filename
            content_type: Declared MIME type
            max_size: Byte limit enforced while copying

        Returns:
            StoredImage: The persisted raw upload

        Raises:
            ValidationError: If the stream exceeds ``max_size``
            StorageError: If the file cannot be written
        """
        stored = self.image(self.generate_filename(original_name, content_type))
        written = 0

        try:
            with open(stored.path, "xb") as target:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if max_size is not None and written > max_size:
                        break
                    target.write(chunk)
        except OSError as e:
            self.remove_quietly(stored.path)
            raise StorageError(
                f"Failed to persist upload '{original_name}': {e}",
                code="persist_failed",
                stage=ErrorStage.UPLOAD,
                details={"filename": stored.filename, "original_name": original_name},
                original_exception=e,
            ) from e

        if max_size is not None and written > max_size:
            self.remove_quietly(stored.path)
            raise file_too_large_error(original_name, max_size)

        logger.info("upload_persisted", filename=stored.filename, original_name=original_name, size=written)
        return stored

    def resolve(self, filename: str, stage: ErrorStage | None = None) -> StoredImage:
        """
        Look up an existing original by name.

        Raises:
            NotFoundError: If no such file exists
            ValidationError: If the name is unsafe, not an image, or a thumbnail
        """
        if not is_safe_filename(filename):
            raise ValidationError(
                f"Invalid filename: {filename!r}", code="invalid_filename", stage=stage, details={"filename": filename}
            )

        stored = self.image(filename)
        if not stored.path.is_file():
            raise NotFoundError(
                f"Image not found: {filename}",
                code="image_not_found",
                user_message="Image not found",
                stage=stage,
                details={"filename": filename},
            )

        if stored.extension not in SUPPORTED_EXTENSIONS or is_thumbnail_filename(filename):
            raise ValidationError(
                f"Invalid file type: {filename}",
                code="invalid_file_type",
                user_message="Invalid file type",
                stage=stage,
                details={"filename": filename},
            )
        return stored

    def list_images(self) -> list[StoredImage]:
        """
        Enumerate stored originals in filesystem order.

        Thumbnails, the metadata document, rotation temp files and anything
        without a supported extension are skipped.
        """
        images = []
        with os.scandir(self.images_dir) as entries:
            for entry in entries:
                if not entry.is_file():
                    continue
                name = entry.name
                if is_thumbnail_filename(name) or name == METADATA_FILENAME:
                    continue
                if Path(name).suffix.lower() not in SUPPORTED_EXTENSIONS:
                    continue
                images.append(self.image(name))
        return images

    def rotation_temp_path(self, stored: StoredImage) -> Path:
        return stored.path.with_name(stored.filename + ROTATION_TEMP_SUFFIX)

    def replace(self, source: Path, target: Path) -> None:
        """Atomically move ``source`` over ``target`` (same directory)."""
        os.replace(source, target)

    def delete_image(self, stored: StoredImage) -> bool:
        """
        Delete an original and its thumbnail.

        Returns:
            bool: True if a thumbnail was removed as well
        """
        try:
            stored.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(
                f"Failed to delete image {stored.filename}: {e}",
                code="delete_failed",
                user_message="Failed to delete image",
                stage=ErrorStage.DELETE,
                details={"filename": stored.filename},
                original_exception=e,
            ) from e

        thumbnail_removed = self.remove_quietly(stored.thumbnail_path)
        logger.info("image_deleted", filename=stored.filename, thumbnail_removed=thumbnail_removed)
        return thumbnail_removed

    def remove_quietly(self, path: Path) -> bool:
        """Best-effort unlink used on cleanup paths."""
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("cleanup_failed", path=str(path), error=str(e))
            return False

    def lock_for(self, filename: str) -> FilenameLock:
        """
        Lock serializing rotate and delete on one filename.

        The entry lives only while some caller holds the returned lock.
        """
        with self._locks_guard:
            lock = self._locks.get(filename)
            if lock is None:
                lock = self._locks[filename] = FilenameLock()
            return lock


def file_too_large_error(filename: str, max_size: int) -> ValidationError:
    max_size_mb = max_size / (1024 * 1024)
    return ValidationError(
        f"File '{filename}' is too large. Maximum size: {max_size_mb:.0f}MB",
        code="file_too_large",
        user_message=f"File too large. Maximum size is {max_size_mb:.0f}MB.",
        stage=ErrorStage.UPLOAD,
        status_code=413,
        details={"filename": filename, "max_size": max_size},
    )


# Global storage service instance
_storage_service: StorageService | None = None
_storage_lock = threading.Lock()


def get_storage_service() -> StorageService:
    """
    Get the global storage service instance.

    Returns:
        StorageService: Global storage service bound to IMAGES_DIR
    """
    global _storage_service
    if _storage_service is None:
        with _storage_lock:
            if _storage_service is None:
                _storage_service = StorageService()
    return _storage_service


def reset_storage_service() -> None:
    """Drop the global instance so the next call re-reads configuration."""
    global _storage_service
    with _storage_lock:
        _storage_service = None
