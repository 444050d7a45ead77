"""Shared fixtures: in-memory sample images and an API client."""

import io
import random

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from webpconv.conversion.service import ConversionService
from webpconv.main import app

WEBP_MAGIC = b"RIFF"


def is_webp(data: bytes) -> bool:
    return len(data) > 12 and data[:4] == WEBP_MAGIC and data[8:12] == b"WEBP"


def make_image(width: int = 48, height: int = 32, mode: str = "RGB", seed: int = 0) -> Image.Image:
    """Noisy image so compressed payloads are not trivially small."""
    rng = random.Random(seed)
    bands = len(mode) if mode in ("RGB", "RGBA") else 1
    pixels = bytes(rng.randrange(256) for _ in range(width * height * bands))
    return Image.frombytes(mode, (width, height), pixels)


def encode(img: Image.Image, fmt: str) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def sample_images() -> dict[str, bytes]:
    img = make_image()
    return {
        "png": encode(img, "PNG"),
        "jpeg": encode(img, "JPEG"),
        "bmp": encode(img, "BMP"),
        "tiff": encode(img, "TIFF"),
        "gif": encode(img.convert("P"), "GIF"),
    }


@pytest.fixture
def png_bytes() -> bytes:
    return encode(make_image(), "PNG")


@pytest.fixture
def service():
    svc = ConversionService(max_workers=4)
    yield svc
    svc.shutdown()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


class OneShotReader(io.RawIOBase):
    """Single-pass byte source: read() works, seek() does not."""

    def __init__(self, data: bytes):
        self._data = io.BytesIO(data)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def readinto(self, buffer) -> int:
        chunk = self._data.read(len(buffer))
        buffer[:len(chunk)] = chunk
        return len(chunk)
