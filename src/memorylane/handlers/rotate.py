"""Rotation handlers for MemoryLane."""

from enum import Enum
from typing import Any

import structlog

from memorylane.handlers.error import ErrorStage, StorageError, ValidationError, wrap_error
from memorylane.logging_config import log_user_action
from memorylane.services.image_processor import ALLOWED_ROTATIONS, get_image_processor
from memorylane.services.storage import get_storage_service

logger = structlog.get_logger()


class RotationState(Enum):
    """Steps of a single rotation request."""

    REQUESTED = "requested"
    VALIDATING = "validating"
    ROTATING = "rotating"
    SWAPPING = "swapping"
    THUMBNAIL_REFRESH = "thumbnail_refresh"
    DONE = "done"
    FAILED = "failed"


def parse_degrees(value: Any) -> int:
    """
    Accept 90, 180 or 270 as an integer or an integer string.

    Raises:
        ValidationError: For anything else, including 0 and booleans
    """
    degrees: int | None = None
    if isinstance(value, bool):
        degrees = None
    elif isinstance(value, int):
        degrees = value
    elif isinstance(value, float) and value.is_integer():
        degrees = int(value)
    elif isinstance(value, str) and value.strip().lstrip("+-").isdigit():
        degrees = int(value.strip())

    if degrees not in ALLOWED_ROTATIONS:
        raise ValidationError(
            f"Invalid rotation degrees: {value!r}",
            code="invalid_degrees",
            user_message="Invalid rotation degrees. Must be 90, 180, or 270",
            stage=ErrorStage.ROTATE,
            details={"degrees": repr(value)},
        )
    return degrees


class RotationRequest:
    """Tracks one rotation through its states and logs every transition."""

    def __init__(self, filename: str, degrees: Any) -> None:
        self.filename = filename
        self.raw_degrees = degrees
        self.state = RotationState.REQUESTED
        self.log = logger.bind(filename=filename, degrees=degrees)

    def transition(self, state: RotationState, **context: Any) -> None:
        self.log.info("rotation_state_changed", previous=self.state.value, state=state.value, **context)
        self.state = state

    def execute(self) -> dict[str, Any]:
        storage_service = get_storage_service()
        image_processor = get_image_processor()

        self.transition(RotationState.VALIDATING)
        stored = storage_service.resolve(self.filename, stage=ErrorStage.ROTATE)
        degrees = parse_degrees(self.raw_degrees)

        with storage_service.lock_for(stored.filename):
            # Re-check under the lock; a delete may have won the race
            stored = storage_service.resolve(self.filename, stage=ErrorStage.ROTATE)
            temp_path = storage_service.rotation_temp_path(stored)

            self.transition(RotationState.ROTATING, temp=temp_path.name)
            try:
                image_processor.rotate(stored.path, degrees, temp_path)
            except Exception:
                storage_service.remove_quietly(temp_path)
                raise

            self.transition(RotationState.SWAPPING)
            try:
                storage_service.replace(temp_path, stored.path)
            except OSError as e:
                storage_service.remove_quietly(temp_path)
                raise StorageError(
                    f"Failed to replace {stored.filename} with its rotated version: {e}",
                    code="rotation_swap_failed",
                    user_message="Failed to rotate image",
                    stage=ErrorStage.ROTATE,
                    details={"filename": stored.filename, "degrees": degrees},
                    original_exception=e,
                ) from e

            self.transition(RotationState.THUMBNAIL_REFRESH)
            thumbnail_refreshed = image_processor.generate_thumbnail(stored.path, stored.thumbnail_path)

        self.transition(RotationState.DONE, thumbnail_refreshed=thumbnail_refreshed)
        log_user_action("admin", "rotate", filename=stored.filename, degrees=degrees)

        message = f"Image {stored.filename} rotated {degrees} degrees successfully"
        if not thumbnail_refreshed:
            message += ", but its thumbnail could not be refreshed"
        return {
            "success": True,
            "message": message,
            "degraded": not thumbnail_refreshed,
            "thumbnailRefreshed": thumbnail_refreshed,
        }


def rotate_image(filename: str, degrees: Any) -> dict[str, Any]:
    """
    Rotate a stored image in place by 90, 180 or 270 degrees clockwise.

    The filename never changes, so existing URLs and metadata stay valid;
    clients bypass caches with their own query parameter.

    Args:
        filename: Stored image name
        degrees: Requested rotation as sent by the client

    Returns:
        dict: Success payload; ``degraded`` is True when only the thumbnail failed

    Raises:
        NotFoundError: If the image does not exist
        ValidationError: If the filename or degrees are invalid
        TransientCodecError: If the image cannot be re-encoded
        StorageError: If the rotated file cannot be swapped in
    """
    request = RotationRequest(filename, degrees)
    try:
        return request.execute()
    except Exception as e:
        request.transition(RotationState.FAILED, error=str(e))
        error = wrap_error(e, ErrorStage.ROTATE, {"filename": filename})
        if error is e:
            raise
        raise error from e
