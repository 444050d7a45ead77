"""Conversion error hierarchy."""
from typing import Optional


class ConversionError(Exception):
    """Base class for everything the conversion pipeline raises."""


class UnsupportedFormatError(ConversionError):
    """Filename extension is not in the upload allow-list."""

    def __init__(self, filename: str, supported: tuple[str, ...]):
        self.filename = filename
        self.supported = supported
        names = ", ".join(ext.lstrip(".") for ext in supported)
        super().__init__(f"Unsupported image format. Supported: {names}")


class UploadTooLargeError(ConversionError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"File too large (max {limit // (1024 * 1024)} MB)")


class DecodeError(ConversionError):
    """Neither the dispatched decoder nor the fallback probe could decode the source."""

    def __init__(self, detected_type: str, cause: Optional[BaseException] = None):
        self.detected_type = detected_type
        self.cause = cause
        super().__init__(f"failed to decode image (type: {detected_type}): {cause}")


class EncodeError(ConversionError):
    """The WebP encoder rejected the image or writing the output failed."""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"failed to encode webp: {cause}")
