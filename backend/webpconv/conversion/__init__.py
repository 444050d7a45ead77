from .errors import ConversionError, DecodeError, EncodeError, UnsupportedFormatError, UploadTooLargeError
from .models import ConversionOptions, ConversionResult, SourceImage
from .service import ConversionService, is_image_supported, output_filename

__all__ = [
    "ConversionService",
    "ConversionOptions",
    "ConversionResult",
    "SourceImage",
    "ConversionError",
    "DecodeError",
    "EncodeError",
    "UnsupportedFormatError",
    "UploadTooLargeError",
    "is_image_supported",
    "output_filename",
]
