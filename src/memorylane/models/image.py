"""
Image models for MemoryLane.

This module contains the StoredImage and ImageMetadata dataclasses together
with the naming rules that tie an image to its derived thumbnail.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

THUMBNAIL_PREFIX = "thumb_"
DEFAULT_UPLOADER = "Anonymous"
IMAGES_URL_PREFIX = "/images"


def thumbnail_filename_for(filename: str) -> str:
    """Name of the thumbnail derived from a stored image."""
    return f"{THUMBNAIL_PREFIX}{filename}"


def is_thumbnail_filename(filename: str) -> bool:
    return filename.startswith(THUMBNAIL_PREFIX)


def image_url(filename: str) -> str:
    return f"{IMAGES_URL_PREFIX}/{filename}"


def normalize_uploader_name(name: str | None) -> str:
    """Trim the uploader display name, falling back to "Anonymous"."""
    if name is None:
        return DEFAULT_UPLOADER
    name = name.strip()
    return name or DEFAULT_UPLOADER


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class StoredImage:
    """
    A server-named original in the image directory.

    The thumbnail is not tracked separately: it is always the file named by
    ``thumbnail_filename`` next to the original, and may be absent.
    """

    filename: str
    path: Path

    @property
    def extension(self) -> str:
        return self.path.suffix.lower()

    @property
    def thumbnail_filename(self) -> str:
        return thumbnail_filename_for(self.filename)

    @property
    def thumbnail_path(self) -> Path:
        return self.path.with_name(self.thumbnail_filename)

    @property
    def url(self) -> str:
        return image_url(self.filename)

    @property
    def thumbnail_url(self) -> str:
        return image_url(self.thumbnail_filename)

    def has_thumbnail(self) -> bool:
        return self.thumbnail_path.is_file()

    def display_thumbnail_url(self) -> str:
        """Thumbnail URL, or the full-size URL when no thumbnail exists."""
        return self.thumbnail_url if self.has_thumbnail() else self.url


@dataclass
class ImageMetadata:
    """
    Upload attributes recorded for a stored image.

    Serialized with the camelCase keys of the on-disk metadata document.
    """

    uploader_name: str
    upload_date: datetime
    original_name: str

    @classmethod
    def create_new(
        cls,
        original_name: str,
        uploader_name: str | None = None,
        upload_date: datetime | None = None,
    ) -> "ImageMetadata":
        """
        Create metadata for a fresh upload.

        Args:
            original_name: Client-provided filename (display only)
            uploader_name: Uploader display name; blank means "Anonymous"
            upload_date: Upload time (defaults to now)

        Returns:
            New ImageMetadata instance
        """
        upload_date = upload_date or datetime.now(UTC)
        # Millisecond precision so the document round-trips exactly
        upload_date = upload_date.replace(microsecond=(upload_date.microsecond // 1000) * 1000)
        return cls(
            uploader_name=normalize_uploader_name(uploader_name),
            upload_date=upload_date,
            original_name=original_name,
        )

    def to_dict(self) -> dict:
        return {
            "uploaderName": self.uploader_name,
            "uploadDate": format_timestamp(self.upload_date),
            "originalName": self.original_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ImageMetadata":
        """
        Create ImageMetadata from a metadata document entry.

        Missing fields get the same fallbacks the gallery uses.
        """
        upload_date = data.get("uploadDate")
        if isinstance(upload_date, str):
            upload_date = parse_timestamp(upload_date)
        elif not isinstance(upload_date, datetime):
            upload_date = datetime.fromtimestamp(0, UTC)

        return cls(
            uploader_name=normalize_uploader_name(data.get("uploaderName")),
            upload_date=upload_date,
            original_name=str(data.get("originalName") or ""),
        )
