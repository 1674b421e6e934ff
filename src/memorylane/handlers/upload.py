"""Upload handlers for MemoryLane."""

from pathlib import Path
from typing import Any, BinaryIO

import structlog

from memorylane.handlers.error import ErrorStage, StorageError, ValidationError, wrap_error
from memorylane.logging_config import log_user_action
from memorylane.models.image import ImageMetadata, StoredImage, normalize_uploader_name
from memorylane.services.image_processor import get_image_processor
from memorylane.services.metadata import get_metadata_store
from memorylane.services.storage import get_storage_service

logger = structlog.get_logger()


def process_upload(
    stream: BinaryIO | None,
    original_name: str | None,
    content_type: str | None = None,
    declared_size: int | None = None,
    uploader_name: str | None = None,
) -> dict[str, Any]:
    """
    Process a single file upload through the complete pipeline.

    Steps run strictly in order: persist under a generated name, normalize
    HEIC/HEIF to JPEG, generate the thumbnail, record metadata. A failed
    conversion keeps the original; a failed thumbnail falls back to the
    full-size URL. Any other failure after persisting removes every file
    this upload produced.

    Args:
        stream: Binary stream with the upload body (None when no file was sent)
        original_name: Client-provided filename (display only)
        content_type: Declared MIME type
        declared_size: Size announced by the client, checked before writing
        uploader_name: Display name; blank means "Anonymous"

    Returns:
        dict: Stored file description for the gallery UI

    Raises:
        ValidationError: If the file is missing, not an image, or too large
        StorageError: If persisting or recording metadata fails
    """
    if stream is None or not original_name:
        raise ValidationError(
            "No file uploaded",
            code="no_file",
            stage=ErrorStage.UPLOAD,
        )

    uploader_name = normalize_uploader_name(uploader_name)
    image_processor = get_image_processor()
    storage_service = get_storage_service()

    # Rejections here happen before anything touches the image directory
    image_processor.validate_upload(original_name, content_type, declared_size)

    logger.info(
        "upload_processing_started",
        original_name=original_name,
        content_type=content_type,
        declared_size=declared_size,
        uploader_name=uploader_name,
    )

    stored = storage_service.persist_upload(
        stream, original_name, content_type=content_type, max_size=image_processor.max_file_size
    )
    final = stored

    try:
        converted = False
        if image_processor.is_heif(stored.filename):
            logger.info("converting_heif", filename=stored.filename)
            jpeg_path = image_processor.convert_heif_to_jpeg(stored.path)
            if jpeg_path is not None:
                final = storage_service.image(jpeg_path.name)
                converted = True
            else:
                logger.warning("upload_stored_unconverted", filename=stored.filename)

        logger.info("generating_thumbnail", filename=final.filename)
        thumbnail_generated = image_processor.generate_thumbnail(final.path, final.thumbnail_path)
        if not thumbnail_generated:
            logger.warning("thumbnail_missing_using_original", filename=final.filename)

        logger.info("saving_metadata", filename=final.filename)
        get_metadata_store().set(final.filename, ImageMetadata.create_new(original_name, uploader_name))

        size = final.path.stat().st_size
    except Exception as e:
        _cleanup_failed_upload(stored, final)
        context = {"original_name": original_name, "filename": final.filename}
        if isinstance(e, StorageError):
            raise StorageError(
                f"Upload failed: {e}",
                code="upload_failed",
                user_message=f"Upload failed: {e}",
                stage=ErrorStage.UPLOAD,
                details={**context, "cause_code": e.code},
                original_exception=e,
            ) from e
        error = wrap_error(e, ErrorStage.UPLOAD, context)
        if error is e:
            raise
        raise error from e

    log_user_action(
        uploader_name,
        "upload",
        filename=final.filename,
        original_name=original_name,
        size=size,
        converted=converted,
        thumbnail_generated=thumbnail_generated,
    )
    logger.info("upload_processing_completed", filename=final.filename, original_name=original_name)

    return {
        "filename": final.filename,
        "originalName": original_name,
        "size": size,
        "url": final.url,
        "thumbnailUrl": final.thumbnail_url if thumbnail_generated else final.url,
        "uploaderName": uploader_name,
        "converted": converted,
        "thumbnailGenerated": thumbnail_generated,
    }


def _cleanup_failed_upload(stored: StoredImage, final: StoredImage) -> None:
    """Remove every file a failed upload may have produced."""
    storage_service = get_storage_service()
    paths: list[Path] = [stored.path, stored.thumbnail_path]
    if final.filename != stored.filename:
        paths.extend([final.path, final.thumbnail_path])

    removed = [path.name for path in paths if storage_service.remove_quietly(path)]
    logger.info("upload_cleanup_completed", filename=stored.filename, removed=removed)


def upload_result_message(result: dict[str, Any]) -> str:
    return f"File {result['originalName']} uploaded successfully"

