"""
Services module for MemoryLane.

This module contains the service classes behind the media pipeline:
- StorageService: image directory naming, enumeration and atomic replacement
- MetadataStore: filename → upload attributes, persisted as one JSON document
- ImageProcessor: HEIC/HEIF normalization, thumbnails and rotation
- ExportService: the single export archive
"""

from .export import ExportService, get_export_service
from .image_processor import ImageProcessor, get_image_processor
from .metadata import MetadataStore, get_metadata_store
from .storage import StorageService, get_storage_service

__all__ = [
    "ExportService",
    "get_export_service",
    "ImageProcessor",
    "get_image_processor",
    "MetadataStore",
    "get_metadata_store",
    "StorageService",
    "get_storage_service",
]
