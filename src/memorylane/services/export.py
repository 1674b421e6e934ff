"""Export service: a single zip of every stored image."""

import os
import threading
import time
import zipfile
from datetime import datetime
from pathlib import Path

from ..config import get_export_lock_stale_seconds, get_exports_dir
from ..handlers.error import ConflictError, ErrorStage, NotFoundError, StorageError, ValidationError
from ..logging_config import get_logger, log_performance
from ..models.export import EXPORT_EXTENSION, ExportArtifact, export_filename
from ..utils.lockfile import LockFile
from .storage import StorageService, file_created_at, get_storage_service, is_safe_filename

logger = get_logger(__name__)

LOCK_FILENAME = ".export.lock"
PARTIAL_SUFFIX = ".partial"


class ExportService:
    """
    Builds, reports, serves and deletes the export archive.

    At most one ``*.zip`` may exist in the export directory. Creation holds an
    exclusively-created lock file for its whole duration and writes the
    archive under a ``.partial`` name that is renamed into place only once
    complete, so a half-written zip is never reported as the export.
    """

    def __init__(
        self,
        exports_dir: Path | str | None = None,
        storage: StorageService | None = None,
        lock_stale_seconds: float | None = None,
    ) -> None:
        self.exports_dir = Path(exports_dir) if exports_dir is not None else get_exports_dir()
        self.storage = storage or get_storage_service()
        self.lock_stale_seconds = (
            lock_stale_seconds if lock_stale_seconds is not None else get_export_lock_stale_seconds()
        )
        self._lock = LockFile(self.lock_path, self.lock_stale_seconds)

    @property
    def lock_path(self) -> Path:
        return self.exports_dir / LOCK_FILENAME

    def _ensure_dir(self) -> None:
        try:
            self.exports_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create export directory {self.exports_dir}: {e}",
                code="export_dir_failed",
                user_message="Failed to create export",
                stage=ErrorStage.EXPORT,
                original_exception=e,
            ) from e

    def _artifact(self, path: Path) -> ExportArtifact:
        return ExportArtifact(
            filename=path.name,
            path=path,
            created_at=file_created_at(path),
            size=path.stat().st_size,
        )

    def find_existing(self) -> ExportArtifact | None:
        """Return the current export, if any."""
        if not self.exports_dir.is_dir():
            return None
        archives = sorted(
            entry for entry in self.exports_dir.iterdir() if entry.name.endswith(EXPORT_EXTENSION) and entry.is_file()
        )
        if not archives:
            return None
        if len(archives) > 1:
            logger.warning("multiple_exports_found", exports=[a.name for a in archives])
        return self._artifact(archives[0])

    def _acquire_lock(self) -> None:
        """
        Take the export lock without waiting.

        Raises:
            ConflictError: If another export is being created
        """
        if not self._lock.acquire():
            raise ConflictError(
                "An export is already being created",
                code="export_in_progress",
                user_message="An export is already being created. Please try again shortly.",
                stage=ErrorStage.EXPORT,
            )

    def create(self) -> dict:
        """
        Bundle every stored image into a new export archive.

        Returns:
            dict: ``filename``, ``downloadUrl`` and ``fileCount``

        Raises:
            ConflictError: If an export exists or is being created
            ValidationError: If there are no images to export
            StorageError: If the archive cannot be written
        """
        self._ensure_dir()
        self._acquire_lock()
        try:
            existing = self.find_existing()
            if existing is not None:
                raise ConflictError(
                    f"Export already exists: {existing.filename}",
                    code="export_exists",
                    user_message="Export already exists. Please delete the current export before creating a new one.",
                    stage=ErrorStage.EXPORT,
                    details={"existing_export": existing.filename},
                    response_extra={"existingExport": existing.filename},
                )

            images = self.storage.list_images()
            if not images:
                raise ValidationError(
                    "No images to export",
                    code="no_images",
                    stage=ErrorStage.EXPORT,
                )

            filename = export_filename(int(time.time() * 1000))
            final_path = self.exports_dir / filename
            partial_path = self.exports_dir / f"{filename}{PARTIAL_SUFFIX}"
            start_time = datetime.now()
            file_count = 0

            try:
                with zipfile.ZipFile(partial_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
                    for image in images:
                        try:
                            archive.write(image.path, arcname=image.filename)
                        except FileNotFoundError:
                            # Deleted after enumeration
                            logger.warning("export_image_vanished", filename=image.filename)
                            continue
                        file_count += 1
                        self._lock.refresh()
                os.replace(partial_path, final_path)
            except (OSError, zipfile.BadZipFile) as e:
                try:
                    partial_path.unlink()
                except FileNotFoundError:
                    pass
                raise StorageError(
                    f"Failed to create export archive: {e}",
                    code="export_failed",
                    user_message="Failed to create export",
                    stage=ErrorStage.EXPORT,
                    details={"filename": filename, "file_count": len(images)},
                    original_exception=e,
                ) from e

            size = final_path.stat().st_size
            log_performance(
                "create_export",
                (datetime.now() - start_time).total_seconds(),
                filename=filename,
                file_count=file_count,
                size=size,
            )
            logger.info("export_created", filename=filename, file_count=file_count, size=size)

            artifact = self._artifact(final_path)
            return {
                "filename": artifact.filename,
                "downloadUrl": artifact.download_url,
                "fileCount": file_count,
            }
        finally:
            self._lock.release()

    def status(self) -> dict:
        existing = self.find_existing()
        if existing is None:
            return {"hasExport": False}
        return existing.to_status()

    def _resolve(self, filename: str) -> Path:
        if not is_safe_filename(filename) or not filename.endswith(EXPORT_EXTENSION):
            raise NotFoundError(
                f"Export file not found: {filename}",
                code="export_not_found",
                user_message="Export file not found",
                stage=ErrorStage.EXPORT,
                details={"filename": filename},
            )
        path = self.exports_dir / filename
        if not path.is_file():
            raise NotFoundError(
                f"Export file not found: {filename}",
                code="export_not_found",
                user_message="Export file not found",
                stage=ErrorStage.EXPORT,
                details={"filename": filename},
            )
        return path

    def delete(self, filename: str) -> None:
        """
        Delete the named export.

        Raises:
            NotFoundError: If no such export exists
            StorageError: If the file cannot be removed
        """
        path = self._resolve(filename)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError(
                f"Export file not found: {filename}",
                code="export_not_found",
                user_message="Export file not found",
                stage=ErrorStage.EXPORT,
            ) from e
        except OSError as e:
            raise StorageError(
                f"Failed to delete export {filename}: {e}",
                code="export_delete_failed",
                user_message="Failed to delete export",
                stage=ErrorStage.EXPORT,
                details={"filename": filename},
                original_exception=e,
            ) from e
        logger.info("export_deleted", filename=filename)

    def download_path(self, filename: str) -> Path:
        """
        Path of a readable export, ready to be streamed.

        Raises:
            NotFoundError: If no such export exists
            StorageError: If the export exists but cannot be read
        """
        path = self._resolve(filename)
        try:
            with open(path, "rb") as f:
                f.read(1)
        except OSError as e:
            raise StorageError(
                f"Failed to read export {filename}: {e}",
                code="download_failed",
                user_message="Failed to download export",
                stage=ErrorStage.EXPORT,
                details={"filename": filename},
                original_exception=e,
            ) from e
        return path


# Global export service instance
_export_service: ExportService | None = None
_export_service_lock = threading.Lock()


def get_export_service() -> ExportService:
    """Get the global export service instance."""
    global _export_service
    if _export_service is None:
        with _export_service_lock:
            if _export_service is None:
                _export_service = ExportService()
    return _export_service


def reset_export_service() -> None:
    global _export_service
    with _export_service_lock:
        _export_service = None
