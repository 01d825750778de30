import io
import os
import tempfile

# Окружение должно быть задано до импорта pixee_backend.config
_RUNTIME_DIR = tempfile.mkdtemp(prefix="pixee-tests-")
os.environ.setdefault("REPLICATE_API_TOKEN", "test-token")
os.environ["DISABLE_CLEANUP"] = "true"
os.environ["VERIFY_PROCESSED"] = "false"
os.environ["UPLOAD_DIR"] = os.path.join(_RUNTIME_DIR, "uploads")
os.environ["PROCESSED_DIR"] = os.path.join(_RUNTIME_DIR, "processed")
os.environ["PUBLIC_UPLOADS_DIR"] = os.path.join(_RUNTIME_DIR, "public-uploads")

import httpx
import pytest
from PIL import Image

from pixee_backend.replicate_client import ReplicateClient

API = "https://api.replicate.com"


class FakeClock:
    """Clock that advances instantly and records every sleep."""

    def __init__(self, start_millis: int = 1_700_000_000_000):
        self.now = 0.0
        self.start_millis = start_millis
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    def epoch_millis(self) -> int:
        return self.start_millis + int(self.now * 1000)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_png(size=(64, 64)) -> bytes:
    """Noise PNG, large enough to pass the minimum size check."""
    buffer = io.BytesIO()
    Image.effect_noise(size, 64).convert("RGB").save(buffer, "PNG")
    return buffer.getvalue()


def mock_http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def image_file(tmp_path, png_bytes):
    path = tmp_path / "photo.png"
    path.write_bytes(png_bytes)
    return str(path)


@pytest.fixture
def replicate_factory():
    """Build a ReplicateClient whose transport is the given handler."""

    def factory(handler, token="test-token"):
        return ReplicateClient(api_token=token, base_url=API, http_client=mock_http_client(handler))

    return factory
