"""Gallery handlers for MemoryLane."""

from typing import Any

import structlog

from memorylane.handlers.error import ErrorStage, wrap_error
from memorylane.logging_config import log_user_action
from memorylane.models.image import DEFAULT_UPLOADER, format_timestamp
from memorylane.services.metadata import get_metadata_store
from memorylane.services.storage import file_created_at, get_storage_service

logger = structlog.get_logger()


def list_images() -> list[dict[str, Any]]:
    """
    List stored originals joined with their metadata.

    Order is whatever the filesystem enumerates; callers wanting a stable
    order sort by ``uploadDate``. Images without a metadata entry fall back
    to the file's creation time and "Anonymous".

    Returns:
        list: ``filename``, ``url``, ``thumbnailUrl``, ``uploadDate``, ``uploaderName`` per image
    """
    try:
        storage_service = get_storage_service()
        metadata_store = get_metadata_store()

        images = []
        for stored in storage_service.list_images():
            try:
                metadata = metadata_store.get(stored.filename)
                if metadata is not None:
                    upload_date = format_timestamp(metadata.upload_date)
                    uploader_name = metadata.uploader_name
                else:
                    upload_date = format_timestamp(file_created_at(stored.path))
                    uploader_name = DEFAULT_UPLOADER
                images.append(
                    {
                        "filename": stored.filename,
                        "url": stored.url,
                        "thumbnailUrl": stored.display_thumbnail_url(),
                        "uploadDate": upload_date,
                        "uploaderName": uploader_name,
                    }
                )
            except FileNotFoundError:
                # Deleted while listing
                logger.debug("image_vanished_during_listing", filename=stored.filename)
    except Exception as e:
        error = wrap_error(e, ErrorStage.LIST)
        if error is e:
            raise
        raise error from e

    logger.debug("images_listed", count=len(images))
    return images


def delete_image(filename: str) -> dict[str, Any]:
    """
    Delete a stored image, its thumbnail and its metadata entry.

    Args:
        filename: Stored image name

    Returns:
        dict: Success payload

    Raises:
        NotFoundError: If the image does not exist
        ValidationError: If the name is not a deletable image
        StorageError: If the file cannot be removed
    """
    storage_service = get_storage_service()
    try:
        stored = storage_service.resolve(filename, stage=ErrorStage.DELETE)
        with storage_service.lock_for(stored.filename):
            stored = storage_service.resolve(filename, stage=ErrorStage.DELETE)
            thumbnail_removed = storage_service.delete_image(stored)
            metadata_removed = get_metadata_store().delete(stored.filename)
    except Exception as e:
        error = wrap_error(e, ErrorStage.DELETE, {"filename": filename})
        if error is e:
            raise
        raise error from e

    log_user_action(
        "admin",
        "delete_image",
        filename=filename,
        thumbnail_removed=thumbnail_removed,
        metadata_removed=metadata_removed,
    )
    return {"success": True, "message": f"Image {filename} deleted successfully"}
