"""
Unit tests for the storage service.
"""

import gc
import io
import re
from pathlib import Path
from unittest.mock import patch

import pytest

from memorylane.handlers.error import ErrorStage, NotFoundError, StorageError, ValidationError
from memorylane.services.storage import StorageService, get_storage_service, is_safe_filename

GENERATED_NAME = re.compile(r"^\d{13}-\d{1,9}\.[a-z]+$")


class TestStorageService:
    """Test cases for StorageService class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.payload = b"\xff\xd8\xff" + b"x" * 4096

    def test_init_creates_directory(self, tmp_path: Path):
        images_dir = tmp_path / "nested" / "images"

        service = StorageService(images_dir)

        assert images_dir.is_dir()
        assert service.metadata_path == images_dir / "metadata.json"

    def test_global_service_uses_configured_directory(self, images_dir: Path):
        assert get_storage_service().images_dir == images_dir
        assert get_storage_service() is get_storage_service()

    @pytest.mark.parametrize(
        "original_name, content_type, expected_extension",
        [
            ("IMG_0001.JPG", "image/jpeg", ".jpg"),
            ("holiday.heic", "application/octet-stream", ".heic"),
            ("photo", "image/png", ".png"),
            ("evil.php", "image/webp", ".webp"),
            ("noext", None, ".jpg"),
        ],
    )
    def test_generate_filename(self, images_dir: Path, original_name, content_type, expected_extension):
        """The client name only ever contributes an allowlisted extension."""
        name = StorageService(images_dir).generate_filename(original_name, content_type)

        assert GENERATED_NAME.match(name)
        assert name.endswith(expected_extension)

    def test_persist_upload(self, images_dir: Path):
        service = StorageService(images_dir)

        stored = service.persist_upload(io.BytesIO(self.payload), "photo.jpg", "image/jpeg")

        assert stored.path.parent == images_dir
        assert stored.path.read_bytes() == self.payload
        assert GENERATED_NAME.match(stored.filename)

    def test_persist_upload_over_limit_leaves_nothing(self, images_dir: Path):
        """Crossing the byte limit while streaming deletes the partial file."""
        service = StorageService(images_dir)

        with pytest.raises(ValidationError) as exc_info:
            service.persist_upload(io.BytesIO(self.payload), "photo.jpg", "image/jpeg", max_size=1024)

        assert exc_info.value.status_code == 413
        assert exc_info.value.code == "file_too_large"
        assert list(images_dir.iterdir()) == []

    def test_persist_upload_write_failure(self, images_dir: Path):
        service = StorageService(images_dir)

        with patch("builtins.open", side_effect=OSError("No space left on device")):
            with pytest.raises(StorageError) as exc_info:
                service.persist_upload(io.BytesIO(self.payload), "photo.jpg", "image/jpeg")

        assert exc_info.value.code == "persist_failed"
        assert exc_info.value.stage == ErrorStage.UPLOAD

    def test_list_images_skips_thumbnails_and_metadata(self, images_dir: Path):
        for name in ["1-1.jpg", "thumb_1-1.jpg", "metadata.json", "notes.txt", "2-2.PNG", "2-2.PNG.temp"]:
            (images_dir / name).write_bytes(b"data")
        (images_dir / "subdir.jpg").mkdir()

        names = sorted(image.filename for image in StorageService(images_dir).list_images())

        assert names == ["1-1.jpg", "2-2.PNG"]

    def test_resolve_not_found_before_type_check(self, images_dir: Path):
        """A missing file is 404 even when its extension is unsupported."""
        service = StorageService(images_dir)

        with pytest.raises(NotFoundError):
            service.resolve("missing.txt", stage=ErrorStage.DELETE)

    def test_resolve_rejects_unsupported_and_thumbnail(self, images_dir: Path):
        service = StorageService(images_dir)
        (images_dir / "notes.txt").write_bytes(b"data")
        (images_dir / "thumb_1-1.jpg").write_bytes(b"data")

        for name in ["notes.txt", "thumb_1-1.jpg"]:
            with pytest.raises(ValidationError) as exc_info:
                service.resolve(name, stage=ErrorStage.ROTATE)
            assert exc_info.value.user_message == "Invalid file type"

    def test_resolve_rejects_traversal(self, images_dir: Path):
        with pytest.raises(ValidationError) as exc_info:
            StorageService(images_dir).resolve("../etc/passwd.jpg")
        assert exc_info.value.code == "invalid_filename"

    def test_delete_image_removes_thumbnail(self, images_dir: Path):
        service = StorageService(images_dir)
        (images_dir / "1-1.jpg").write_bytes(b"data")
        (images_dir / "thumb_1-1.jpg").write_bytes(b"thumb")

        thumbnail_removed = service.delete_image(service.image("1-1.jpg"))

        assert thumbnail_removed is True
        assert list(images_dir.iterdir()) == []

    def test_lock_for_is_per_filename(self, images_dir: Path):
        service = StorageService(images_dir)
        lock = service.lock_for("a.jpg")

        assert service.lock_for("a.jpg") is lock
        assert service.lock_for("b.jpg") is not lock

    def test_idle_locks_are_forgotten(self, images_dir: Path):
        """Locks for files nobody is rotating or deleting do not accumulate."""
        service = StorageService(images_dir)
        for i in range(100):
            with service.lock_for(f"{i}-{i}.jpg"):
                pass
        gc.collect()

        assert len(service._locks) == 0


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("1700000000000-1.jpg", True),
        ("../secret.jpg", False),
        ("a/b.jpg", False),
        (".hidden.jpg", False),
        ("", False),
        ("..", False),
    ],
)
def test_is_safe_filename(filename, expected):
    assert is_safe_filename(filename) is expected
