from __future__ import annotations

from enum import Enum


class ConvertError(Exception):
    """Base class for everything the conversion core raises on purpose."""


class ConfigurationError(ConvertError):
    """Bad geometry, LUT, data type pair or config file. Detected at setup."""


class InvalidGeometry(ConfigurationError):
    """A raster description that cannot form a single-top-tile pyramid."""


class InputError(ConvertError):
    """Malformed or out of range tile address."""


class CodecErrorKind(str, Enum):
    UNSUPPORTED_OR_MALFORMED_INPUT = "UnsupportedOrMalformedInput"
    UNSUPPORTED_PIXEL_FORMAT = "UnsupportedPixelFormat"


class CodecError(ConvertError):
    """
    Uniform failure of a decode or encode call.

    Every fault of the underlying image library is translated into this type
    at the codec boundary; `message` holds the first diagnostic reported.
    """

    def __init__(self, message: str, kind: CodecErrorKind = CodecErrorKind.UNSUPPORTED_OR_MALFORMED_INPUT):
        super().__init__(message)
        self.message = message
        self.kind = kind


class ConversionError(ConvertError):
    """Data type conversion requested at request time for an unlisted pair."""


class UpstreamError(ConvertError):
    """Source tile fetch failed or returned a non-success status."""
