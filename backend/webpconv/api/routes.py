"""API routes for upload and conversion."""
import asyncio
import logging
import math
from typing import AsyncIterator, Optional
from urllib.parse import quote

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from starlette.concurrency import iterate_in_threadpool

from webpconv.config import (
    DEFAULT_LOSSLESS,
    DEFAULT_QUALITY,
    MAX_UPLOAD_SIZE_BYTES,
    OUTPUT_MEDIA_TYPE,
    SUPPORTED_EXTENSIONS,
    WEBP_METHOD,
)
from webpconv.conversion.detect import DECODERS
from webpconv.conversion.errors import (
    ConversionError,
    DecodeError,
    UnsupportedFormatError,
    UploadTooLargeError,
)
from webpconv.conversion.models import ConversionOptions, ConversionResult
from webpconv.conversion.service import check_image_supported, get_conversion_service
from webpconv.conversion.stream import PipeReader

logger = logging.getLogger("webpconv.api")
router = APIRouter(prefix="/v1", tags=["converter"])


def parse_quality(value: Optional[str]) -> float:
    """Lenient: missing, unparsable or out-of-range values fall back to the default."""
    if not value:
        return DEFAULT_QUALITY
    try:
        quality = float(value)
    except ValueError:
        return DEFAULT_QUALITY
    if math.isnan(quality) or not 0 <= quality <= 100:
        return DEFAULT_QUALITY
    return quality


def parse_lossless(value: Optional[str]) -> bool:
    """'true' or '1' enable lossless; an absent value uses the configured default."""
    if not value:
        return DEFAULT_LOSSLESS
    return value in ("true", "1")


def _upload_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    fp = file.file
    size = fp.seek(0, 2)
    fp.seek(0)
    return size


def _ascii_fallback(filename: str) -> str:
    safe = "".join(c if 32 <= ord(c) < 127 and c not in '"\\' else "_" for c in filename)
    return safe or "image.webp"


def content_disposition(filename: str) -> str:
    """attachment header; adds an RFC 5987 filename* when the name is not plain ASCII."""
    fallback = _ascii_fallback(filename)
    if fallback == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


async def stream_body(stream: PipeReader) -> AsyncIterator[bytes]:
    """Response body over the pipe. Closes it however the response ends, client disconnects included."""
    try:
        async for chunk in iterate_in_threadpool(stream):
            yield chunk
    finally:
        stream.close()


def _release(result: Optional[ConversionResult]) -> None:
    if result is not None:
        result.stream.close()


def _http_error(exc: ConversionError) -> HTTPException:
    if isinstance(exc, UploadTooLargeError):
        return HTTPException(413, str(exc))
    if isinstance(exc, UnsupportedFormatError):
        return HTTPException(400, str(exc))
    if isinstance(exc, DecodeError):
        return HTTPException(400, f"Conversion failed: {exc}")
    logger.error("Conversion error: %s", exc)
    return HTTPException(500, f"Conversion failed: {exc}")


@router.get("/health")
def health():
    return {"status": "healthy", "service": "webp-converter"}


@router.get("/formats")
def get_formats():
    return {
        "input": [ext.lstrip(".") for ext in SUPPORTED_EXTENSIONS],
        "detected": sorted(DECODERS),
        "output": OUTPUT_MEDIA_TYPE,
        "defaults": {"quality": DEFAULT_QUALITY, "lossless": DEFAULT_LOSSLESS, "method": WEBP_METHOD},
        "max_upload_size_bytes": MAX_UPLOAD_SIZE_BYTES,
    }


@router.post("/upload")
async def upload_image(
    image: UploadFile = File(..., description="Image to convert"),
    quality: Optional[str] = Query(None, description="WebP quality 0-100 (default 80)"),
    lossless: Optional[str] = Query(None, description="'true' or '1' for lossless"),
):
    """Convert an uploaded image to WebP and stream the result back."""
    options = ConversionOptions(quality=parse_quality(quality), lossless=parse_lossless(lossless))
    filename = image.filename or ""
    svc = get_conversion_service()
    result = None
    try:
        check_image_supported(filename)
        size = _upload_size(image)
        if size > MAX_UPLOAD_SIZE_BYTES:
            raise UploadTooLargeError(size, MAX_UPLOAD_SIZE_BYTES)
        result = await asyncio.to_thread(svc.convert, image.file, filename, options)
        # Wait for the first chunk so an encoder failure can still become a 500
        await asyncio.to_thread(result.stream.peek)
    except ConversionError as e:
        _release(result)
        raise _http_error(e) from e
    except Exception as e:
        _release(result)
        logger.exception("Conversion failed for %s: %s", filename, e)
        raise HTTPException(500, f"Conversion failed: {e}") from e
    except BaseException:
        # Request cancelled while waiting on the encoder
        _release(result)
        raise

    logger.info("Streaming %s (from %s)", result.filename, result.source_format)
    return StreamingResponse(
        stream_body(result.stream),
        media_type=result.media_type,
        headers={
            "Content-Disposition": content_disposition(result.filename),
            "X-Converted-Filename": quote(result.filename, safe=" ._-()[]"),
        },
    )
