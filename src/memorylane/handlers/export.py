"""Export handlers for MemoryLane."""

from pathlib import Path
from typing import Any

import structlog

from memorylane.handlers.error import ErrorStage, wrap_error
from memorylane.logging_config import log_user_action
from memorylane.services.export import get_export_service

logger = structlog.get_logger()


def create_export() -> dict[str, Any]:
    """
    Create the export archive.

    Raises:
        ConflictError: If an export already exists or is being created
        ValidationError: If there are no images to export
        StorageError: If the archive cannot be written
    """
    try:
        result = get_export_service().create()
    except Exception as e:
        error = wrap_error(e, ErrorStage.EXPORT)
        if error is e:
            raise
        raise error from e

    log_user_action("admin", "create_export", filename=result["filename"], file_count=result["fileCount"])
    return {"success": True, **result}


def get_export_status() -> dict[str, Any]:
    """Report whether an export exists, and its details if so."""
    try:
        return get_export_service().status()
    except Exception as e:
        error = wrap_error(
            e, ErrorStage.EXPORT, message="Failed to check export status", code="export_status_failed"
        )
        if error is e:
            raise
        raise error from e


def delete_export(filename: str) -> dict[str, Any]:
    """
    Delete the named export.

    Raises:
        NotFoundError: If no such export exists
    """
    get_export_service().delete(filename)
    log_user_action("admin", "delete_export", filename=filename)
    return {"success": True, "message": f"Export {filename} deleted successfully"}


def get_export_download(filename: str) -> Path:
    """
    Path of the export to stream back to the client.

    Raises:
        NotFoundError: If no such export exists
        StorageError: If it exists but cannot be read
    """
    path = get_export_service().download_path(filename)
    logger.info("export_download_started", filename=filename)
    return path
