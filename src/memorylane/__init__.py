"""
memorylane - shared photo gallery media pipeline

Accepts visitor uploads for a shared gallery and keeps the collection in order:
- Upload validation and storage under server-generated names
- HEIC/HEIF to JPEG normalization
- Thumbnail generation and in-place rotation
- Metadata kept in a flat JSON document next to the images
- A single-instance zip export of the whole collection
"""

__version__ = "0.1.0"
__author__ = "memorylane"
__description__ = "Media ingestion and export pipeline for a shared photo gallery"
