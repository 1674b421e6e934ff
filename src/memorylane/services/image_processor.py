"""Image processing service for MemoryLane."""

import os
from datetime import datetime
from pathlib import Path

from PIL import Image, ImageOps

from ..config import get_conversion_quality, get_max_file_size, get_thumbnail_max_size, get_thumbnail_quality
from ..handlers.error import ErrorStage, TransientCodecError, ValidationError
from ..logging_config import get_logger, log_performance
from ..utils.retry import RetryPolicy
from .storage import SUPPORTED_EXTENSIONS, file_too_large_error

try:
    from pillow_heif import register_heif_opener  # type: ignore[import-untyped]

    register_heif_opener()
    HEIF_AVAILABLE = True
except ImportError:
    HEIF_AVAILABLE = False

logger = get_logger(__name__)

HEIF_EXTENSIONS = frozenset({".heic", ".heif"})

SUPPORTED_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/avif",
        "image/tiff",
        "image/bmp",
        "image/ico",
        "image/x-icon",
        "image/vnd.microsoft.icon",
        "image/heic",
        "image/heif",
    }
)

ALLOWED_ROTATIONS = (90, 180, 270)

# Clockwise rotation expressed as PIL transposes (PIL's ROTATE_* are counter-clockwise)
_CLOCKWISE_TRANSPOSE = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


def _flatten_to_rgb(image: Image.Image) -> Image.Image:
    """Convert to RGB for JPEG output, compositing transparency onto white."""
    if image.mode in ("RGB", "L"):
        return image
    if image.mode in ("RGBA", "LA", "P"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    return image.convert("RGB")


def _staging_path(target: Path) -> Path:
    """Hidden sibling the encoder writes to before the rename into ``target``."""
    return target.with_name(f".{target.name}.{os.getpid()}.part")


class ImageProcessor:
    """Format normalization, thumbnailing and rotation for stored images."""

    def __init__(
        self,
        thumbnail_size: int | None = None,
        thumbnail_quality: int | None = None,
        conversion_quality: int | None = None,
        max_file_size: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """
        Initialize the image processor.

        Args:
            thumbnail_size: Bounding box edge in pixels (defaults to THUMBNAIL_MAX_SIZE)
            thumbnail_quality: Thumbnail JPEG quality (defaults to THUMBNAIL_QUALITY)
            conversion_quality: HEIC→JPEG quality (defaults to CONVERSION_QUALITY)
            max_file_size: Upload limit in bytes (defaults to MAX_FILE_SIZE)
            retry_policy: Retry policy for conversion and thumbnailing
        """
        self.thumbnail_size = thumbnail_size or get_thumbnail_max_size()
        self.thumbnail_quality = thumbnail_quality or get_thumbnail_quality()
        self.conversion_quality = conversion_quality or get_conversion_quality()
        self.max_file_size = max_file_size or get_max_file_size()
        self.retry_policy = retry_policy or RetryPolicy.from_config()

        if not HEIF_AVAILABLE:
            logger.warning(
                "heif_support_unavailable",
                message="Install pillow-heif for HEIC support; HEIC uploads will be stored unconverted",
            )

    def is_supported_format(self, filename: str) -> bool:
        """Check the extension against the allowlist."""
        return Path(filename).suffix.lower() in SUPPORTED_EXTENSIONS

    def is_supported_mime_type(self, content_type: str | None) -> bool:
        if not content_type:
            return False
        return content_type.split(";")[0].strip().lower() in SUPPORTED_MIME_TYPES

    def is_heif(self, filename: str) -> bool:
        return Path(filename).suffix.lower() in HEIF_EXTENSIONS

    def validate_upload(self, filename: str, content_type: str | None, file_size: int | None) -> None:
        """
        Validate an upload before anything is written to disk.

        The MIME type and the extension are checked independently; either one
        matching the allowlist is enough.

        Args:
            filename: Client-provided filename
            content_type: Declared MIME type
            file_size: Declared size in bytes, if known

        Raises:
            ValidationError: If the type is not allowed or the file is too large
        """
        if not (self.is_supported_mime_type(content_type) or self.is_supported_format(filename)):
            raise ValidationError(
                f"Unsupported file '{filename}' ({content_type or 'no content type'})",
                code="unsupported_format",
                user_message="Only image files are allowed!",
                stage=ErrorStage.UPLOAD,
                details={
                    "filename": filename,
                    "content_type": content_type,
                    "extension": Path(filename).suffix.lower(),
                },
            )

        if file_size is not None and file_size > self.max_file_size:
            raise file_too_large_error(filename, self.max_file_size)

        logger.debug("upload_validation_success", filename=filename, content_type=content_type, file_size=file_size)

    def convert_heif_to_jpeg(self, source: Path) -> Path | None:
        """
        Convert a HEIC/HEIF file to a JPEG next to it.

        On success the source file is deleted. On failure the source is kept
        untouched so the upload survives unconverted.

        Args:
            source: Path to a ``.heic``/``.heif`` file

        Returns:
            Path: The new ``.jpg`` path, or None if every attempt failed
        """
        target = source.with_suffix(".jpg")
        staging = _staging_path(target)
        start_time = datetime.now()

        def attempt() -> None:
            with Image.open(source) as image:
                image = ImageOps.exif_transpose(image)
                image = _flatten_to_rgb(image)
                image.save(staging, format="JPEG", quality=self.conversion_quality)
            os.replace(staging, target)

        try:
            self.retry_policy.run(
                attempt,
                "heif_conversion",
                stage=ErrorStage.UPLOAD,
                source=source.name,
            )
        except TransientCodecError:
            self._discard(staging)
            logger.warning("heif_conversion_gave_up", source=source.name, kept_original=True)
            return None

        try:
            source.unlink()
        except OSError as e:
            logger.warning("heif_source_cleanup_failed", source=source.name, error=str(e))

        log_performance(
            "convert_heif_to_jpeg",
            (datetime.now() - start_time).total_seconds(),
            source=source.name,
            target=target.name,
            jpeg_file_size=target.stat().st_size,
        )
        return target

    def generate_thumbnail(self, source: Path, target: Path) -> bool:
        """
        Write a bounded JPEG preview of ``source`` to ``target``.

        The image is oriented from EXIF, fitted inside a
        ``thumbnail_size`` square without upscaling, and replaced atomically.

        Args:
            source: Any supported image
            target: Thumbnail path (``thumb_<filename>``)

        Returns:
            bool: False if every attempt failed
        """
        staging = _staging_path(target)
        start_time = datetime.now()
        box = (self.thumbnail_size, self.thumbnail_size)

        def attempt() -> tuple[int, int]:
            with Image.open(source) as image:
                image = ImageOps.exif_transpose(image)
                image.thumbnail(box, Image.Resampling.LANCZOS)
                image = _flatten_to_rgb(image)
                image.save(staging, format="JPEG", quality=self.thumbnail_quality, optimize=True)
                size = image.size
            os.replace(staging, target)
            return size

        try:
            thumbnail_size = self.retry_policy.run(attempt, "thumbnail_generation", source=source.name)
        except TransientCodecError:
            self._discard(staging)
            return False

        log_performance(
            "generate_thumbnail",
            (datetime.now() - start_time).total_seconds(),
            source=source.name,
            thumbnail_size=thumbnail_size,
            thumbnail_file_size=target.stat().st_size,
            quality=self.thumbnail_quality,
        )
        return True

    def rotate(self, source: Path, degrees: int, target: Path) -> None:
        """
        Re-encode ``source`` rotated clockwise by ``degrees`` into ``target``.

        The output keeps the source's format. EXIF orientation is applied
        first so the result looks rotated by exactly ``degrees``.

        Raises:
            ValidationError: If degrees is not 90, 180 or 270
            TransientCodecError: If the image cannot be decoded or encoded
        """
        if degrees not in ALLOWED_ROTATIONS:
            raise ValidationError(
                f"Invalid rotation degrees: {degrees}",
                code="invalid_degrees",
                user_message="Invalid rotation degrees. Must be 90, 180, or 270",
                stage=ErrorStage.ROTATE,
                details={"degrees": degrees},
            )

        start_time = datetime.now()
        try:
            with Image.open(source) as image:
                image_format = image.format or "JPEG"
                if image_format == "MPO":
                    # Multi-picture JPEGs from phone cameras; keep the primary frame
                    image_format = "JPEG"
                rotated = ImageOps.exif_transpose(image).transpose(_CLOCKWISE_TRANSPOSE[degrees])
                save_kwargs: dict = {}
                if image_format == "JPEG":
                    rotated = _flatten_to_rgb(rotated)
                    save_kwargs["quality"] = 95
                rotated.save(target, format=image_format, **save_kwargs)
        except Exception as e:
            raise TransientCodecError(
                f"Failed to rotate {source.name}: {e}",
                code="rotation_failed",
                user_message="Failed to rotate image",
                stage=ErrorStage.ROTATE,
                details={"filename": source.name, "degrees": degrees},
                retry_suggested=False,
                original_exception=e,
            ) from e

        log_performance(
            "rotate_image",
            (datetime.now() - start_time).total_seconds(),
            filename=source.name,
            degrees=degrees,
            format=image_format,
        )

    def _discard(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("staging_cleanup_failed", path=str(path), error=str(e))


# Global image processor instance
_image_processor: ImageProcessor | None = None


def get_image_processor() -> ImageProcessor:
    """
    Get the global image processor instance.

    Returns:
        ImageProcessor: Global image processor instance
    """
    global _image_processor
    if _image_processor is None:
        _image_processor = ImageProcessor()
    return _image_processor


def reset_image_processor() -> None:
    global _image_processor
    _image_processor = None
