"""Content sniffing and decoder dispatch.

The sniffed type only chooses which Pillow plugin to try first. If that
plugin fails, or the type is unknown, every registered plugin is probed; a
file only fails when nothing can decode it.
"""
import io
import logging
from typing import BinaryIO, Optional, Union

from PIL import Image

from webpconv.config import MAX_IMAGE_PIXELS, SNIFF_LENGTH
from webpconv.conversion.errors import DecodeError
from webpconv.conversion.models import SourceImage

logger = logging.getLogger("webpconv.detect")

Image.MAX_IMAGE_PIXELS = MAX_IMAGE_PIXELS

OCTET_STREAM = "application/octet-stream"

# (prefix, content type); checked in order
MAGIC_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"\x00\x00\x02\x00", "image/x-icon"),
)

# Sniffed content type -> Pillow format id
DECODERS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/gif": "GIF",
    "image/bmp": "BMP",
    "image/tiff": "TIFF",
    "image/webp": "WEBP",
    "image/x-icon": "ICO",
}

ByteSource = Union[bytes, bytearray, memoryview, BinaryIO]


def sniff_content_type(data: bytes) -> str:
    """Classify leading bytes by magic number. Never looks at a filename."""
    head = bytes(data[:SNIFF_LENGTH])
    for magic, content_type in MAGIC_SIGNATURES:
        if head.startswith(magic):
            return content_type
    # RIFF....WEBPVP
    if head[:4] == b"RIFF" and head[8:14] == b"WEBPVP":
        return "image/webp"
    return OCTET_STREAM


def _is_seekable(src) -> bool:
    seekable = getattr(src, "seekable", None)
    if seekable is None:
        return False
    try:
        return bool(seekable())
    except (OSError, ValueError):
        return False


def open_source(src: ByteSource) -> tuple[BinaryIO, bytes]:
    """Return a random-access stream positioned at 0 plus the bytes to sniff.

    Seekable sources are rewound and used as-is; single-pass sources are
    buffered fully in memory so they can still be decoded once.
    """
    if isinstance(src, (bytes, bytearray, memoryview)):
        fp: BinaryIO = io.BytesIO(bytes(src))
    elif _is_seekable(src):
        src.seek(0)
        fp = src
    else:
        fp = io.BytesIO(src.read())
    head = fp.read(SNIFF_LENGTH)
    fp.seek(0)
    return fp, head


def _decode_as(fp: BinaryIO, formats: Optional[list[str]]) -> Image.Image:
    fp.seek(0)
    img = Image.open(fp, formats=formats)
    # Pillow only warns between 1x and 2x its limit; reject before decompressing
    limit = Image.MAX_IMAGE_PIXELS
    if limit and img.width * img.height > limit:
        raise Image.DecompressionBombError(
            f"Image has {img.width * img.height} pixels, exceeds limit of {limit}"
        )
    # Force the full pixel decode so truncated data fails here, not in the encoder
    img.load()
    return img


def decode_image(src: ByteSource) -> SourceImage:
    """Decode src into a SourceImage or raise DecodeError."""
    try:
        fp, head = open_source(src)
    except OSError as e:
        raise DecodeError(OCTET_STREAM, e) from e
    content_type = sniff_content_type(head)
    size = _stream_size(fp)
    logger.info("Detected content type: %s, file size: %s bytes", content_type, size)

    img: Optional[Image.Image] = None
    plugin = DECODERS.get(content_type)
    if plugin:
        try:
            img = _decode_as(fp, [plugin])
        except Exception as e:
            logger.info("%s decoder failed (%s), probing all decoders", plugin, e)
    else:
        logger.info("Unrecognized content type %s, probing all decoders", content_type)

    if img is None:
        try:
            img = _decode_as(fp, None)
        except Exception as e:
            raise DecodeError(content_type, e) from e

    logger.info("Successfully decoded image format: %s (%sx%s)", img.format, img.width, img.height)
    return SourceImage(image=img, format=img.format or "unknown", content_type=content_type)


def _stream_size(fp: BinaryIO) -> Optional[int]:
    try:
        size = fp.seek(0, io.SEEK_END)
        fp.seek(0)
        return size
    except (OSError, ValueError):
        return None
