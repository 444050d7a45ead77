"""WebP conversion service: decode once, then stream the encoder output through a pipe."""
import logging
import shutil
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Optional

from PIL import Image

from webpconv.config import (
    MAX_WORKERS,
    OUTPUT_EXTENSION,
    OUTPUT_MEDIA_TYPE,
    PIPE_CHUNK_SIZE,
    PIPE_MAX_CHUNKS,
    SUPPORTED_EXTENSIONS,
)
from webpconv.conversion.detect import ByteSource, decode_image
from webpconv.conversion.errors import EncodeError, UnsupportedFormatError
from webpconv.conversion.models import ConversionOptions, ConversionResult, SourceImage
from webpconv.conversion.stream import PipeClosedError, PipeWriter, pipe

logger = logging.getLogger("webpconv.service")


def _split_extension(name: str) -> tuple[str, str]:
    """(base, ext) where ext runs from the last dot of the final path segment; ".png" is all extension."""
    base, dot, ext = name.rpartition(".")
    if not dot or "/" in ext or "\\" in ext:
        return name, ""
    return base, dot + ext


def is_image_supported(filename: Optional[str]) -> bool:
    """Cheap extension pre-check for uploads. Not a substitute for decoding."""
    return _split_extension(filename or "")[1].lower() in SUPPORTED_EXTENSIONS


def check_image_supported(filename: Optional[str]) -> None:
    if not is_image_supported(filename):
        raise UnsupportedFormatError(filename or "", SUPPORTED_EXTENSIONS)


def output_filename(original: str) -> str:
    """photo.JPG -> photo.webp, noext -> noext.webp, a.b.png -> a.b.webp."""
    return _split_extension(original)[0] + OUTPUT_EXTENSION


def prepare_for_webp(img: Image.Image) -> Image.Image:
    """Return an RGB or RGBA view of img; WebP has no palette, greyscale or CMYK modes."""
    if img.mode in ("RGB", "RGBA"):
        return img
    has_alpha = img.mode in ("LA", "PA", "RGBa", "La") or "transparency" in img.info
    return img.convert("RGBA" if has_alpha else "RGB")


def _fail_if_cancelled(writer: PipeWriter, future: Future) -> None:
    """An encode cancelled before it started never closes its writer; do it here."""
    if future.cancelled():
        writer.close_with_error(EncodeError(CancelledError("conversion service shut down")))


class ConversionService:
    """Runs one encoder task per conversion on a shared thread pool."""

    def __init__(
        self,
        max_workers: int = MAX_WORKERS,
        chunk_size: int = PIPE_CHUNK_SIZE,
        max_chunks: int = PIPE_MAX_CHUNKS,
    ):
        self._chunk_size = chunk_size
        self._max_chunks = max_chunks
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webp-encoder")
        logger.info("ConversionService initialized with max_workers=%s", max_workers)

    @staticmethod
    def _encode(source: SourceImage, options: ConversionOptions, writer: PipeWriter) -> None:
        """Producer task: encode into writer and always close it exactly once."""
        try:
            img = prepare_for_webp(source.image)
            img.save(
                writer,
                format="WEBP",
                quality=options.quality,
                lossless=options.lossless,
                method=options.method,
            )
            logger.info(
                "Encoded %s %sx%s -> webp (%s bytes, quality=%s, lossless=%s)",
                source.format, source.width, source.height,
                writer.bytes_written, options.quality, options.lossless,
            )
        except PipeClosedError:
            logger.info("Output stream abandoned by reader; stopping encode")
        except Exception as e:
            logger.exception("WebP encoding failed: %s", e)
            error = EncodeError(e)
            error.__cause__ = e
            writer.close_with_error(error)
        finally:
            writer.close()

    def encode(self, source: SourceImage, options: ConversionOptions, filename: str) -> ConversionResult:
        """Start encoding source in the background and hand back the reading end."""
        reader, writer = pipe(self._chunk_size, self._max_chunks)
        future = self._executor.submit(self._encode, source, options, writer)
        future.add_done_callback(partial(_fail_if_cancelled, writer))
        return ConversionResult(
            stream=reader,
            filename=output_filename(filename),
            source_format=source.format,
            media_type=OUTPUT_MEDIA_TYPE,
            producer=future,
        )

    def convert(
        self,
        src: ByteSource,
        filename: str,
        options: Optional[ConversionOptions] = None,
    ) -> ConversionResult:
        """Decode src and return a lazy WebP stream. Raises DecodeError for bad input."""
        options = options or ConversionOptions()
        source = decode_image(src)
        return self.encode(source, options, filename)

    def convert_file(
        self,
        input_path: Path,
        output_path: Optional[Path] = None,
        options: Optional[ConversionOptions] = None,
    ) -> Path:
        """Convert a local image file to a WebP file. Output defaults to a sibling .webp path."""
        input_path = Path(input_path)
        if output_path is None:
            output_path = input_path.with_name(output_filename(input_path.name))
        output_path = Path(output_path)
        with open(input_path, "rb") as src:
            result = self.convert(src, input_path.name, options)
        try:
            with result.stream as stream, open(output_path, "wb") as out:
                shutil.copyfileobj(stream, out)
        except Exception:
            output_path.unlink(missing_ok=True)
            raise
        logger.info("Converted %s -> %s", input_path.name, output_path.name)
        return output_path

    def shutdown(self) -> None:
        """Stop accepting work. Queued encodes are cancelled and their readers get EncodeError."""
        self._executor.shutdown(wait=False, cancel_futures=True)


# Singleton
_conversion_service: Optional[ConversionService] = None


def get_conversion_service() -> ConversionService:
    global _conversion_service
    if _conversion_service is None:
        _conversion_service = ConversionService()
    return _conversion_service
