"""Tests for the conversion service: options, filenames, encoding and the producer lifecycle."""

import io
from concurrent.futures import ThreadPoolExecutor

import pytest
from PIL import Image

from conftest import OneShotReader, encode, is_webp, make_image
from webpconv.conversion.errors import DecodeError, EncodeError, UnsupportedFormatError
from webpconv.conversion.models import ConversionOptions
from webpconv.conversion.service import (
    ConversionService,
    check_image_supported,
    is_image_supported,
    output_filename,
    prepare_for_webp,
)


def test_options_defaults():
    options = ConversionOptions()
    assert options.quality == 80
    assert options.lossless is False


@pytest.mark.parametrize("given, expected", [(150, 100.0), (-10, 0.0), (55.5, 55.5), (0, 0.0), (100, 100.0)])
def test_options_quality_is_clamped(given, expected):
    assert ConversionOptions(quality=given).quality == expected


def test_options_method_is_clamped():
    assert ConversionOptions(method=9).method == 6
    assert ConversionOptions(method=-1).method == 0


def test_options_are_immutable():
    options = ConversionOptions()
    with pytest.raises(AttributeError):
        options.quality = 10


@pytest.mark.parametrize(
    "name, expected",
    [
        ("photo.JPG", "photo.webp"),
        ("noext", "noext.webp"),
        ("a.b.png", "a.b.webp"),
        ("scan.tiff", "scan.webp"),
        ("dir.d/noext", "dir.d/noext.webp"),
        ("照片.png", "照片.webp"),
        (".png", ".webp"),
        ("uploads/.png", "uploads/.webp"),
    ],
)
def test_output_filename(name, expected):
    assert output_filename(name) == expected


@pytest.mark.parametrize("name", ["a.jpg", "a.JPEG", "a.png", "a.bmp", "a.TIFF", "a.tif", ".png", ".JPG"])
def test_supported_extensions(name):
    assert is_image_supported(name)


@pytest.mark.parametrize("name", ["a.gif", "a.webp", "noext", "", None, "png", "dir.png/noext"])
def test_unsupported_extensions(name):
    assert not is_image_supported(name)
    with pytest.raises(UnsupportedFormatError, match="Supported: jpg, jpeg, png, bmp, tiff"):
        check_image_supported(name)


@pytest.mark.parametrize("mode, expected", [("P", "RGB"), ("L", "RGB"), ("LA", "RGBA"), ("CMYK", "RGB"), ("RGBA", "RGBA")])
def test_prepare_for_webp_modes(mode, expected):
    img = Image.new(mode, (4, 4))
    assert prepare_for_webp(img).mode == expected


def test_prepare_keeps_palette_transparency():
    img = Image.new("P", (4, 4))
    img.info["transparency"] = 0
    assert prepare_for_webp(img).mode == "RGBA"


@pytest.mark.parametrize("fmt", ["png", "jpeg", "gif", "bmp", "tiff"])
def test_convert_each_format_produces_webp(service, sample_images, fmt):
    result = service.convert(sample_images[fmt], f"sample.{fmt}")
    data = result.stream.read()
    assert is_webp(data)
    assert result.filename == "sample.webp"
    assert result.media_type == "image/webp"
    result.producer.result(timeout=5)
    with Image.open(io.BytesIO(data)) as out:
        assert out.format == "WEBP"
        assert out.size == (48, 32)


def test_convert_seekable_and_single_pass_sources(service, png_bytes):
    from_file = service.convert(io.BytesIO(png_bytes), "a.png").stream.read()
    from_pipe = service.convert(OneShotReader(png_bytes), "a.png").stream.read()
    assert is_webp(from_file)
    assert from_file == from_pipe


def test_convert_lossless_round_trips_pixels(service):
    img = make_image(16, 16)
    result = service.convert(encode(img, "PNG"), "a.png", ConversionOptions(lossless=True))
    with Image.open(io.BytesIO(result.stream.read())) as out:
        assert out.convert("RGB").tobytes() == img.tobytes()


def test_quality_out_of_range_matches_bounds(service, png_bytes):
    def run(quality):
        return service.convert(png_bytes, "a.png", ConversionOptions(quality=quality)).stream.read()

    assert run(150) == run(100)
    assert run(-10) == run(0)


def test_lower_quality_is_smaller(service):
    data = encode(make_image(64, 64), "PNG")
    high = service.convert(data, "a.png", ConversionOptions(quality=95)).stream.read()
    low = service.convert(data, "a.png", ConversionOptions(quality=5)).stream.read()
    assert len(low) < len(high)


def test_corrupt_input_raises_before_streaming(service):
    data = encode(make_image(64, 64), "PNG")
    with pytest.raises(DecodeError):
        service.convert(data[:200], "broken.png")


def test_encoder_failure_surfaces_on_read(service, png_bytes, monkeypatch):
    def broken_save(self, fp, format=None, **params):
        raise OSError("encoder unavailable")

    monkeypatch.setattr(Image.Image, "save", broken_save)
    result = service.convert(png_bytes, "a.png")
    with pytest.raises(EncodeError, match="encoder unavailable"):
        result.stream.read()
    # producer finished cleanly after handing over the error
    result.producer.result(timeout=5)


def test_concurrent_conversions_do_not_interfere(service):
    sizes = [(16 + i * 4, 8 + i * 2) for i in range(8)]
    inputs = [encode(make_image(w, h, seed=i), "PNG") for i, (w, h) in enumerate(sizes)]

    def run(data):
        return service.convert(data, "x.png").stream.read()

    with ThreadPoolExecutor(max_workers=8) as pool:
        outputs = list(pool.map(run, inputs))

    for data, expected in zip(outputs, sizes):
        with Image.open(io.BytesIO(data)) as out:
            assert out.size == expected


def test_abandoned_stream_stops_producer():
    # Tiny pipe: the encoder output is far larger than what the pipe can hold
    service = ConversionService(max_workers=1, chunk_size=16, max_chunks=2)
    try:
        data = encode(make_image(256, 256), "PNG")
        result = service.convert(data, "big.png", ConversionOptions(lossless=True))
        assert result.stream.read(16)
        assert not result.producer.done()
        result.stream.close()
        result.producer.result(timeout=5)
        assert result.producer.done()
    finally:
        service.shutdown()


def test_shutdown_fails_queued_conversions():
    service = ConversionService(max_workers=1, chunk_size=16, max_chunks=2)
    data = encode(make_image(256, 256), "PNG")
    # Left unread, this one holds the only worker on a full pipe
    busy = service.convert(data, "busy.png", ConversionOptions(lossless=True))
    busy.stream.peek()
    queued = service.convert(data, "queued.png")
    try:
        service.shutdown()
        assert queued.producer.cancelled()
        with pytest.raises(EncodeError, match="shut down"):
            queued.stream.read()
    finally:
        busy.stream.close()
        queued.stream.close()
    busy.producer.result(timeout=5)


def test_convert_file_writes_webp(service, tmp_path):
    src = tmp_path / "holiday.bmp"
    make_image().save(src, format="BMP")
    out = service.convert_file(src)
    assert out == tmp_path / "holiday.webp"
    assert is_webp(out.read_bytes())


def test_convert_file_explicit_output(service, tmp_path):
    src = tmp_path / "a.png"
    make_image().save(src, format="PNG")
    out = service.convert_file(src, tmp_path / "nested.webp", ConversionOptions(quality=30))
    assert out.read_bytes()[:4] == b"RIFF"
