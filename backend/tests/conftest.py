"""
Pytest configuration and shared fixtures
"""
import pytest
from fastapi.testclient import TestClient
from pathlib import Path
import base64
import io
import sys
import os
import tempfile

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before importing app
_tmp_root = tempfile.mkdtemp(prefix="photo-studio-tests-")
os.environ["PHOTO_STUDIO_CONFIG_DIR"] = os.path.join(_tmp_root, "config")
os.environ["UPLOADS_DIR"] = os.path.join(_tmp_root, "uploads")
os.environ.pop("GEMINI_API_KEY", None)
os.environ.pop("API_KEY", None)

from main import app
from photo_studio.config import Settings
from photo_studio.credentials import CredentialProvider, MemoryKeyStore, STORE_KEY
from photo_studio.gemini import ImagePayload


@pytest.fixture
def client():
    """Create a test client for the FastAPI app"""
    return TestClient(app)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_base="https://gemini.test/v1beta",
        video_poll_interval=10.0,
        video_max_wait=600.0,
        video_poll_retries=3,
        uploads_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
def credentials():
    return CredentialProvider(store=MemoryKeyStore({STORE_KEY: "test-key"}), env_default="")


@pytest.fixture(autouse=True)
def clear_env_keys(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    import main

    main._rate_buckets.clear()
    yield
    main._rate_buckets.clear()


@pytest.fixture
def memory_key_store(monkeypatch):
    """Replace the app's saved-key store with an in-memory one."""
    import main

    store = MemoryKeyStore()
    monkeypatch.setattr(main, "key_store", store)
    return store


@pytest.fixture
def sample_image_bytes():
    """Create sample image bytes for testing"""
    from PIL import Image as PILImage  # type: ignore

    img = PILImage.new("RGB", (64, 64), color=(255, 255, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def photo(sample_image_bytes):
    return ImagePayload.from_bytes(sample_image_bytes, "image/png")


@pytest.fixture
def make_payload():
    def _make(raw: bytes = b"img", mime_type: str = "image/jpeg") -> ImagePayload:
        return ImagePayload(data=base64.b64encode(raw).decode("utf-8"), mime_type=mime_type)

    return _make
