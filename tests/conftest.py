"""
Pytest configuration and fixtures for MemoryLane tests.
"""

import io
from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image

from memorylane.config import get_config
from memorylane.services.export import reset_export_service
from memorylane.services.image_processor import HEIF_AVAILABLE, reset_image_processor
from memorylane.services.metadata import reset_metadata_stores
from memorylane.services.storage import reset_storage_service


def _reset_singletons() -> None:
    get_config().clear_cache()
    reset_storage_service()
    reset_metadata_stores()
    reset_image_processor()
    reset_export_service()


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Point every service at fresh directories and disable retry backoff."""
    images_dir = tmp_path / "images"
    exports_dir = tmp_path / "exports"
    monkeypatch.setenv("IMAGES_DIR", str(images_dir))
    monkeypatch.setenv("EXPORTS_DIR", str(exports_dir))
    monkeypatch.setenv("RETRY_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.delenv("MAX_FILE_SIZE", raising=False)
    _reset_singletons()
    yield
    _reset_singletons()


@pytest.fixture
def reset_services() -> Callable[[], None]:
    """Re-read configuration after a test changes the environment."""
    return _reset_singletons


@pytest.fixture
def images_dir(tmp_path: Path) -> Path:
    path = tmp_path / "images"
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def exports_dir(tmp_path: Path) -> Path:
    return tmp_path / "exports"


def make_image_bytes(
    format_type: str = "JPEG", size: tuple[int, int] = (100, 100), mode: str = "RGB", color="red"
) -> bytes:
    """Create a test image in memory."""
    image = Image.new(mode, size, color=color)
    buffer = io.BytesIO()
    image.save(buffer, format=format_type)
    return buffer.getvalue()


def make_marked_image(size: tuple[int, int] = (40, 20), format_type: str = "PNG") -> bytes:
    """White image with a red pixel in the top-left corner, for orientation checks."""
    image = Image.new("RGB", size, color="white")
    image.putpixel((0, 0), (255, 0, 0))
    buffer = io.BytesIO()
    image.save(buffer, format=format_type)
    return buffer.getvalue()


def heif_encoding_available() -> bool:
    """True when the installed pillow-heif can also write HEIF files."""
    if not HEIF_AVAILABLE:
        return False
    try:
        make_image_bytes("HEIF", (16, 16))
    except Exception:
        return False
    return True


requires_heif_encoder = pytest.mark.skipif(
    not heif_encoding_available(), reason="pillow-heif cannot encode HEIF here"
)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG", (640, 480))


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG", (120, 80))
