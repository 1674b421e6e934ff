"""HTTP routes for the MemoryLane gallery."""

from typing import Any

import structlog
from fastapi import APIRouter, File, Form, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

from memorylane.handlers.export import create_export, delete_export, get_export_download, get_export_status
from memorylane.handlers.gallery import delete_image, list_images
from memorylane.handlers.rotate import rotate_image
from memorylane.handlers.upload import process_upload, upload_result_message

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["memorylane"])


class RotateRequest(BaseModel):
    # Validated by the rotation handler so bad values surface as its own 400
    degrees: Any = None


# Handlers are plain functions so FastAPI runs them in its worker threads


@router.post("/upload")
def upload(images: UploadFile | None = File(None), uploaderName: str | None = Form(None)):
    if images is None:
        result = process_upload(None, None, uploader_name=uploaderName)
    else:
        result = process_upload(
            images.file,
            images.filename,
            content_type=images.content_type,
            declared_size=images.size,
            uploader_name=uploaderName,
        )
    return {"success": True, "file": result, "message": upload_result_message(result)}


@router.get("/images")
def images_list():
    return {"images": list_images()}


@router.post("/images/{filename}/rotate")
def images_rotate(filename: str, payload: RotateRequest | None = None):
    degrees = payload.degrees if payload is not None else None
    return rotate_image(filename, degrees)


@router.delete("/images/{filename}")
def images_delete(filename: str):
    return delete_image(filename)


@router.post("/export/create")
def export_create():
    return create_export()


@router.get("/export/status")
def export_status():
    return get_export_status()


@router.get("/export/download/{filename}")
def export_download(filename: str):
    path = get_export_download(filename)
    return FileResponse(path, filename=path.name, media_type="application/zip")


@router.delete("/export/{filename}")
def export_delete(filename: str):
    return delete_export(filename)
