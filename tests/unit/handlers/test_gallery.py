"""
Unit tests for gallery listing and image deletion.
"""

import io
import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from memorylane.handlers.error import NotFoundError, StorageError, ValidationError
from memorylane.handlers.gallery import delete_image, list_images
from memorylane.handlers.rotate import rotate_image
from memorylane.handlers.upload import process_upload
from memorylane.services.storage import get_storage_service
from tests.conftest import make_image_bytes


def _upload(name: str = "photo.jpg", uploader: str | None = None) -> str:
    data = make_image_bytes("JPEG", (200, 100))
    return process_upload(io.BytesIO(data), name, "image/jpeg", uploader_name=uploader)["filename"]


class TestListImages:
    """Test cases for list_images."""

    def test_empty_gallery(self):
        assert list_images() == []

    def test_lists_uploads_with_metadata(self):
        first = _upload("a.jpg", "Ada")
        second = _upload("b.jpg")

        images = {image["filename"]: image for image in list_images()}

        assert set(images) == {first, second}
        assert images[first] == {
            "filename": first,
            "url": f"/images/{first}",
            "thumbnailUrl": f"/images/thumb_{first}",
            "uploadDate": images[first]["uploadDate"],
            "uploaderName": "Ada",
        }
        assert images[second]["uploaderName"] == "Anonymous"

    def test_file_without_metadata_uses_fallbacks(self, images_dir: Path):
        """Images copied in by hand show up as Anonymous with the file time."""
        (images_dir / "1600000000000-1.png").write_bytes(make_image_bytes("PNG", (10, 10)))

        [image] = list_images()

        assert image["uploaderName"] == "Anonymous"
        assert image["uploadDate"].endswith("Z")
        assert image["thumbnailUrl"] == "/images/1600000000000-1.png"

    def test_thumbnails_and_metadata_excluded(self, images_dir: Path):
        filename = _upload()

        names = [image["filename"] for image in list_images()]

        assert names == [filename]
        assert (images_dir / "metadata.json").exists()

    def test_listing_failure_is_stage_tagged(self):
        with patch("memorylane.services.storage.os.scandir", side_effect=PermissionError("denied")):
            with pytest.raises(StorageError) as exc_info:
                list_images()

        assert exc_info.value.code == "list_failed"
        assert exc_info.value.stage.value == "list"


class TestDeleteImage:
    """Test cases for delete_image."""

    def test_delete_removes_image_thumbnail_and_metadata(self, images_dir: Path):
        filename = _upload(uploader="Ada")
        keep = _upload()

        result = delete_image(filename)

        assert result == {"success": True, "message": f"Image {filename} deleted successfully"}
        assert not (images_dir / filename).exists()
        assert not (images_dir / f"thumb_{filename}").exists()
        document = json.loads((images_dir / "metadata.json").read_text())
        assert list(document) == [keep]
        assert [image["filename"] for image in list_images()] == [keep]
        assert filename not in get_storage_service()._locks

    def test_delete_without_metadata_entry(self, images_dir: Path):
        """Thumbnails go even when the metadata document never knew the image."""
        (images_dir / "1-1.jpg").write_bytes(b"data")
        (images_dir / "thumb_1-1.jpg").write_bytes(b"thumb")

        delete_image("1-1.jpg")

        assert list(images_dir.iterdir()) == []

    def test_delete_missing(self):
        with pytest.raises(NotFoundError) as exc_info:
            delete_image("1-1.jpg")
        assert exc_info.value.user_message == "Image not found"

    def test_delete_unsupported_type(self, images_dir: Path):
        (images_dir / "notes.txt").write_bytes(b"data")

        with pytest.raises(ValidationError) as exc_info:
            delete_image("notes.txt")

        assert exc_info.value.status_code == 400
        assert (images_dir / "notes.txt").exists()

    def test_delete_waits_for_rotation(self, images_dir: Path):
        """Delete of a file being rotated runs after the rotation finishes."""
        filename = _upload()
        lock = get_storage_service().lock_for(filename)
        outcome = {}

        def run_delete():
            outcome["result"] = delete_image(filename)

        with lock:
            worker = threading.Thread(target=run_delete)
            worker.start()
            worker.join(timeout=0.2)
            assert worker.is_alive()
            assert (images_dir / filename).exists()

        worker.join(timeout=5)
        assert outcome["result"]["success"] is True
        assert not (images_dir / filename).exists()
        with pytest.raises(NotFoundError):
            rotate_image(filename, 90)
