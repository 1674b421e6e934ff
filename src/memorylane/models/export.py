"""Export archive model."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .image import format_timestamp

EXPORT_FILENAME_PREFIX = "memorylane-images-"
EXPORT_EXTENSION = ".zip"
EXPORT_DOWNLOAD_PREFIX = "/api/export/download"


def export_filename(created_at_ms: int) -> str:
    return f"{EXPORT_FILENAME_PREFIX}{created_at_ms}{EXPORT_EXTENSION}"


def export_download_url(filename: str) -> str:
    return f"{EXPORT_DOWNLOAD_PREFIX}/{filename}"


@dataclass(frozen=True)
class ExportArtifact:
    """The single zip bundle of all current stored images."""

    filename: str
    path: Path
    created_at: datetime
    size: int

    @property
    def download_url(self) -> str:
        return export_download_url(self.filename)

    def to_status(self) -> dict:
        """Export status payload for an existing artifact."""
        return {
            "hasExport": True,
            "filename": self.filename,
            "downloadUrl": self.download_url,
            "createdAt": format_timestamp(self.created_at),
            "size": self.size,
        }
