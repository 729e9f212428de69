"""Exact-size output encoding.

:class:`OutputEncoder` renders a generated image at exactly the caller's
requested width and height, always with a cover-fit (scale to fill, then
centre-crop). Content outside the target aspect ratio is cropped away; that
is the accepted trade-off for hitting exact print/pixel dimensions.

Codec Availability
------------------
Which formats Pillow can write depends on how it was built. The
:class:`CodecRegistry` is probed once when the encoder is constructed and is
never re-checked per request. BMP handling is then an explicit
:class:`BmpPolicy` chosen by configuration:

==================  ==========================================================
Policy              Behaviour
==================  ==========================================================
``native``          Pillow's BMP writer; unsupported-format error if missing
``substitute_png``  PNG bytes labelled ``image/bmp`` (logged as degraded)
``manual``          Hand-written uncompressed 24-bit BMP
``fail``            Always an unsupported-format error
==================  ==========================================================
"""

from __future__ import annotations

import io
import logging
import struct
from collections.abc import Iterable
from enum import Enum

from PIL import Image, ImageOps, features

from .canvas import RESAMPLE, decode_image, has_alpha, parse_colour
from .errors import ImageDecodeError, UnsupportedFormatError
from .models import Canvas, GeneratedImage, OutputFormat, OutputImage

logger = logging.getLogger(__name__)

# 72 DPI expressed in pixels per metre, as written in BMP headers.
_BMP_PIXELS_PER_METRE = 2835


class BmpPolicy(str, Enum):
    NATIVE = "native"
    SUBSTITUTE_PNG = "substitute_png"
    MANUAL = "manual"
    FAIL = "fail"


class CodecRegistry:
    """Set of output formats the running Pillow build can write.

    Args:
        available: Formats to treat as available. Use :meth:`probe` to
            detect them from the installed Pillow instead.
    """

    def __init__(self, available: Iterable[OutputFormat]) -> None:
        self._available = frozenset(available)

    @classmethod
    def probe(cls) -> CodecRegistry:
        """Detect writable formats from Pillow's registered save handlers."""
        Image.init()
        available = {fmt for fmt in OutputFormat if fmt.pillow_format in Image.SAVE}
        if OutputFormat.WEBP in available and not features.check("webp"):
            available.discard(OutputFormat.WEBP)

        missing = sorted(fmt.value for fmt in OutputFormat if fmt not in available)
        if missing:
            logger.warning("Pillow cannot write: %s", ", ".join(missing))
        logger.info("Codec registry: %s", ", ".join(sorted(f.value for f in available)))
        return cls(available)

    def supports(self, fmt: OutputFormat) -> bool:
        return fmt in self._available

    @property
    def available(self) -> frozenset[OutputFormat]:
        return self._available


def cover_resize(img: Image.Image, width: int, height: int) -> Image.Image:
    """Scale ``img`` to fill ``width x height`` and centre-crop the excess."""
    return ImageOps.fit(img, (width, height), RESAMPLE, centering=(0.5, 0.5))


def flatten(img: Image.Image, background: tuple[int, int, int]) -> Image.Image:
    """Composite an image with alpha onto an opaque background and return RGB."""
    if not has_alpha(img):
        return img.convert("RGB")
    rgba = img.convert("RGBA")
    base = Image.new("RGBA", rgba.size, background + (255,))
    return Image.alpha_composite(base, rgba).convert("RGB")


def encode_bmp24(img: Image.Image) -> bytes:
    """Encode an image as an uncompressed, bottom-up, 24-bit BMP.

    Each row is stored in BGR order and padded to a multiple of four bytes.
    """
    rgb = img.convert("RGB")
    width, height = rgb.size
    stride = width * 3
    row_size = (stride + 3) & ~3
    row_padding = b"\x00" * (row_size - stride)
    pixels = rgb.tobytes("raw", "BGR")

    body = b"".join(
        pixels[y * stride:(y + 1) * stride] + row_padding for y in range(height - 1, -1, -1)
    )
    pixel_offset = 14 + 40
    file_header = struct.pack("<2sIHHI", b"BM", pixel_offset + len(body), 0, 0, pixel_offset)
    info_header = struct.pack(
        "<IiiHHIIiiII",
        40,  # header size
        width,
        height,
        1,  # planes
        24,  # bits per pixel
        0,  # BI_RGB
        len(body),
        _BMP_PIXELS_PER_METRE,
        _BMP_PIXELS_PER_METRE,
        0,
        0,
    )
    return file_header + info_header + body


class OutputEncoder:
    """Render images at an exact size in the requested format.

    Args:
        codecs: Writable formats, normally :meth:`CodecRegistry.probe`.
        bmp_policy: How BMP requests are honoured.
        jpeg_quality: JPEG quality.
        webp_quality: Lossy WEBP quality.
        background: Colour used to flatten transparency for formats without
            an alpha channel.
        max_dimension: Largest accepted width or height.
    """

    def __init__(
        self,
        codecs: CodecRegistry,
        bmp_policy: BmpPolicy = BmpPolicy.NATIVE,
        jpeg_quality: int = 95,
        webp_quality: int = 80,
        background: str = "#ffffff",
        max_dimension: int = 4096,
    ) -> None:
        self._codecs = codecs
        self._bmp_policy = BmpPolicy(bmp_policy)
        self._jpeg_quality = jpeg_quality
        self._webp_quality = webp_quality
        self._background = parse_colour(background)
        self._max_dimension = max_dimension

        if self._bmp_policy is BmpPolicy.NATIVE and not codecs.supports(OutputFormat.BMP):
            logger.warning("BMP policy is 'native' but Pillow cannot write BMP; BMP requests will fail")

    def encode_exact(
        self,
        image: Canvas | GeneratedImage,
        width: int,
        height: int,
        output_format: OutputFormat | str = OutputFormat.JPEG,
    ) -> OutputImage:
        """Cover-fit ``image`` to exactly ``width x height`` and encode it.

        Raises:
            ValueError: If the dimensions are out of range.
            ImageDecodeError: If the source bytes are not a readable image.
            UnsupportedFormatError: If the format cannot be produced.
        """
        try:
            fmt = OutputFormat.parse(output_format)
        except ValueError as exc:
            raise UnsupportedFormatError(str(output_format), "unknown format") from exc
        self.check_dimensions(width, height)
        self.ensure_supported(fmt)

        try:
            source = decode_image(image.data)
        except ImageDecodeError as exc:
            raise ImageDecodeError(exc.message, stage="encode") from exc
        framed = cover_resize(source, width, height)
        data, mime_type = self._encode(framed, fmt)

        logger.info("Encoded %dx%d %s (%d bytes)", width, height, mime_type, len(data))
        return OutputImage(data=data, mime_type=mime_type, width=width, height=height)

    def check_dimensions(self, width: int, height: int) -> None:
        """Raise ``ValueError`` unless both dimensions are within range."""
        for name, value in (("width", width), ("height", height)):
            if value < 1 or value > self._max_dimension:
                raise ValueError(f"{name} must be 1-{self._max_dimension}, got {value}")

    def ensure_supported(self, fmt: OutputFormat) -> None:
        """Raise :class:`UnsupportedFormatError` if ``fmt`` cannot be produced."""
        if fmt is OutputFormat.BMP:
            if self._bmp_policy is BmpPolicy.FAIL:
                raise UnsupportedFormatError(fmt.value, "BMP output is disabled by configuration")
            if self._bmp_policy is BmpPolicy.NATIVE and not self._codecs.supports(fmt):
                raise UnsupportedFormatError(fmt.value, "Pillow has no BMP writer")
            if self._bmp_policy is BmpPolicy.SUBSTITUTE_PNG and not self._codecs.supports(
                OutputFormat.PNG
            ):
                raise UnsupportedFormatError(fmt.value, "PNG substitute is unavailable")
            return
        if not self._codecs.supports(fmt):
            raise UnsupportedFormatError(fmt.value, "codec not available in this environment")

    def _encode(self, img: Image.Image, fmt: OutputFormat) -> tuple[bytes, str]:
        buffer = io.BytesIO()

        if fmt is OutputFormat.JPEG:
            flatten(img, self._background).save(buffer, format="JPEG", quality=self._jpeg_quality)
        elif fmt is OutputFormat.PNG:
            img.convert("RGBA" if has_alpha(img) else "RGB").save(buffer, format="PNG")
        elif fmt is OutputFormat.WEBP:
            img.convert("RGBA" if has_alpha(img) else "RGB").save(
                buffer, format="WEBP", quality=self._webp_quality
            )
        elif self._bmp_policy is BmpPolicy.MANUAL:
            return encode_bmp24(flatten(img, self._background)), fmt.mime_type
        elif self._bmp_policy is BmpPolicy.SUBSTITUTE_PNG:
            logger.warning("Substituting PNG bytes for BMP output")
            flatten(img, self._background).save(buffer, format="PNG")
        else:
            flatten(img, self._background).save(buffer, format="BMP")

        return buffer.getvalue(), fmt.mime_type
