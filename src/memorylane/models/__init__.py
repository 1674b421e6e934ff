"""
Models module for MemoryLane.

This module contains data models:
- StoredImage: a server-named original and its derived thumbnail
- ImageMetadata: upload attributes kept in the metadata document
- ExportArtifact: the single export zip
"""

from .export import ExportArtifact, export_download_url, export_filename
from .image import (
    DEFAULT_UPLOADER,
    THUMBNAIL_PREFIX,
    ImageMetadata,
    StoredImage,
    is_thumbnail_filename,
    thumbnail_filename_for,
)

__all__ = [
    "DEFAULT_UPLOADER",
    "THUMBNAIL_PREFIX",
    "ExportArtifact",
    "ImageMetadata",
    "StoredImage",
    "export_download_url",
    "export_filename",
    "is_thumbnail_filename",
    "thumbnail_filename_for",
]
