"""
Unit tests for the export service.
"""

import os
import time
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from memorylane.handlers.error import ConflictError, NotFoundError, StorageError, ValidationError
from memorylane.services.export import LOCK_FILENAME, ExportService
from memorylane.services.storage import StorageService
from memorylane.utils.lockfile import LockFile


class TestExportService:
    """Test cases for ExportService."""

    @pytest.fixture(autouse=True)
    def _service(self, images_dir: Path, exports_dir: Path):
        self.images_dir = images_dir
        self.exports_dir = exports_dir
        self.service = ExportService(exports_dir, storage=StorageService(images_dir))

    def _add_images(self, *names: str) -> None:
        for name in names:
            (self.images_dir / name).write_bytes(f"bytes of {name}".encode())

    def test_create_bundles_originals_only(self):
        self._add_images("1-1.jpg", "2-2.png")
        (self.images_dir / "thumb_1-1.jpg").write_bytes(b"thumb")
        (self.images_dir / "metadata.json").write_text("{}")

        result = self.service.create()

        assert result["fileCount"] == 2
        assert result["filename"].startswith("memorylane-images-")
        assert result["downloadUrl"] == f"/api/export/download/{result['filename']}"
        with zipfile.ZipFile(self.exports_dir / result["filename"]) as archive:
            assert sorted(archive.namelist()) == ["1-1.jpg", "2-2.png"]
            assert archive.read("1-1.jpg") == b"bytes of 1-1.jpg"
        assert not (self.exports_dir / LOCK_FILENAME).exists()
        assert not list(self.exports_dir.glob("*.partial"))

    def test_create_with_no_images(self):
        """An empty gallery produces no archive."""
        with pytest.raises(ValidationError) as exc_info:
            self.service.create()

        assert exc_info.value.user_message == "No images to export"
        assert exc_info.value.status_code == 400
        assert list(self.exports_dir.glob("*.zip")) == []

    def test_second_create_conflicts(self):
        self._add_images("1-1.jpg")
        first = self.service.create()

        with pytest.raises(ConflictError) as exc_info:
            self.service.create()

        assert exc_info.value.code == "export_exists"
        assert exc_info.value.to_response()["existingExport"] == first["filename"]
        assert len(list(self.exports_dir.glob("*.zip"))) == 1

    def test_create_while_locked(self):
        """A fresh lock means another export is in progress."""
        self._add_images("1-1.jpg")
        self.exports_dir.mkdir(parents=True)
        (self.exports_dir / LOCK_FILENAME).write_text("other")

        with pytest.raises(ConflictError) as exc_info:
            self.service.create()

        assert exc_info.value.code == "export_in_progress"
        assert (self.exports_dir / LOCK_FILENAME).exists()

    def test_stale_lock_is_cleared(self):
        self._add_images("1-1.jpg")
        self.exports_dir.mkdir(parents=True)
        lock = self.exports_dir / LOCK_FILENAME
        lock.write_text("crashed")
        old = time.time() - 3600
        os.utime(lock, (old, old))

        result = self.service.create()

        assert result["fileCount"] == 1
        assert not lock.exists()

    def test_stale_lock_claimed_by_another_creator(self):
        """Losing the race to take over an abandoned lock means another export is running."""
        self._add_images("1-1.jpg")
        self.exports_dir.mkdir(parents=True)
        lock = self.exports_dir / LOCK_FILENAME
        lock.write_text("crashed")
        old = time.time() - 3600
        os.utime(lock, (old, old))

        with patch("memorylane.utils.lockfile.os.rename", side_effect=FileNotFoundError):
            with pytest.raises(ConflictError) as exc_info:
                self.service.create()

        assert exc_info.value.code == "export_in_progress"
        assert list(self.exports_dir.glob("*.zip")) == []

    def test_lock_kept_fresh_while_archiving(self):
        self._add_images("1-1.jpg", "2-2.jpg", "3-3.jpg")

        with patch.object(LockFile, "refresh", autospec=True) as refresh:
            self.service.create()

        assert refresh.call_count == 3

    def test_archive_failure_removes_partial(self):
        self._add_images("1-1.jpg")

        with patch("memorylane.services.export.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError) as exc_info:
                self.service.create()

        assert exc_info.value.code == "export_failed"
        assert [p.name for p in self.exports_dir.iterdir()] == []

    def test_status_without_export_directory(self):
        assert self.service.status() == {"hasExport": False}

    def test_status_with_export(self):
        self._add_images("1-1.jpg")
        result = self.service.create()

        status = self.service.status()

        assert status["hasExport"] is True
        assert status["filename"] == result["filename"]
        assert status["downloadUrl"] == result["downloadUrl"]
        assert status["size"] == (self.exports_dir / result["filename"]).stat().st_size
        assert status["createdAt"].endswith("Z")

    def test_delete_then_create_again(self):
        self._add_images("1-1.jpg")
        first = self.service.create()

        self.service.delete(first["filename"])

        assert self.service.status() == {"hasExport": False}
        assert self.service.create()["fileCount"] == 1

    @pytest.mark.parametrize("filename", ["memorylane-images-1.zip", "../images/1-1.jpg", "notes.txt"])
    def test_delete_unknown(self, filename):
        with pytest.raises(NotFoundError) as exc_info:
            self.service.delete(filename)
        assert exc_info.value.user_message == "Export file not found"

    def test_download_path(self):
        self._add_images("1-1.jpg")
        result = self.service.create()

        assert self.service.download_path(result["filename"]) == self.exports_dir / result["filename"]

    def test_download_unreadable_is_not_a_404(self):
        self._add_images("1-1.jpg")
        result = self.service.create()

        with patch("builtins.open", side_effect=PermissionError("denied")):
            with pytest.raises(StorageError) as exc_info:
                self.service.download_path(result["filename"])

        assert exc_info.value.code == "download_failed"
        assert exc_info.value.status_code == 500
