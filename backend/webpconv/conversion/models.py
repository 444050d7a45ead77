"""Conversion request/response models."""
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Optional

from PIL import Image

from webpconv.config import DEFAULT_LOSSLESS, DEFAULT_QUALITY, WEBP_METHOD
from webpconv.conversion.stream import PipeReader


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class ConversionOptions:
    """WebP encoder settings for one request. quality is clamped to 0-100, method to 0-6."""

    quality: float = DEFAULT_QUALITY
    lossless: bool = DEFAULT_LOSSLESS
    method: int = WEBP_METHOD

    def __post_init__(self):
        object.__setattr__(self, "quality", float(clamp(float(self.quality), 0.0, 100.0)))
        object.__setattr__(self, "method", int(clamp(int(self.method), 0, 6)))
        object.__setattr__(self, "lossless", bool(self.lossless))


@dataclass
class SourceImage:
    """Decoded pixels plus what the detector learned about them."""

    image: Image.Image
    format: str  # decoder-reported, e.g. "PNG"
    content_type: str  # sniffed, e.g. "image/png"

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


@dataclass
class ConversionResult:
    """Lazy encoded output. stream is single-pass; close it to stop the encoder early."""

    stream: PipeReader
    filename: str
    source_format: str
    media_type: str = "image/webp"
    producer: Optional[Future] = field(default=None, repr=False)
