"""Square canvas normalization.

:class:`CanvasNormalizer` places an arbitrary raster image onto a fixed-size
square canvas. It is used twice in the pipeline: to normalize reference
images before they are sent to the backend, and to deliver generated images
on the no-crop output path.

Fit Modes
---------
- ``contain`` (default): the longest side becomes ``target_size``, the
  aspect ratio is preserved, and the shortfall is padded with the background
  colour. Padding is split ``floor(residual / 2)`` before and the remainder
  after, so an odd residual puts the extra pixel on the right/bottom.
- ``cover``: scale until the frame is filled, then centre-crop.
- ``fill``: stretch to the frame without preserving the aspect ratio.

Sources that are already square skip the geometry entirely and are simply
rescaled to ``target_size``.

Encoding
--------
The canvas is JPEG-encoded unless the source carries an alpha channel, in
which case it is PNG-encoded so the image's own transparency survives. The
padding itself is always the opaque background colour.
"""

from __future__ import annotations

import io
import logging
from typing import NamedTuple

from PIL import Image, ImageColor, ImageOps, UnidentifiedImageError

from .errors import ImageDecodeError
from .models import Canvas, FitMode, GeneratedImage, ResolvedReference

logger = logging.getLogger(__name__)

DEFAULT_BACKGROUND = "#ffffff"
RESAMPLE = Image.Resampling.LANCZOS


class Padding(NamedTuple):
    left: int
    top: int
    right: int
    bottom: int


def decode_image(data: bytes) -> Image.Image:
    """Open and fully load image bytes, applying EXIF orientation.

    Raises:
        ImageDecodeError: If the bytes are not a readable image.
    """
    if not data:
        raise ImageDecodeError("Image data is empty")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Could not decode image: {exc}") from exc
    return ImageOps.exif_transpose(img)


def has_alpha(img: Image.Image) -> bool:
    """Return True if the image carries transparency information."""
    if img.mode in ("RGBA", "LA", "PA", "RGBa", "La"):
        return True
    return img.mode == "P" and "transparency" in img.info


def contain_size(width: int, height: int, target: int) -> tuple[int, int]:
    """Size of a ``width x height`` image fitted inside a ``target`` square.

    The longest side becomes exactly ``target``; the other side is rounded
    and never drops below one pixel.
    """
    if width >= height:
        return target, max(1, round(height * target / width))
    return max(1, round(width * target / height)), target


def compute_padding(target: int, width: int, height: int) -> Padding:
    """Margins that centre a ``width x height`` image in a ``target`` square.

    The leading side gets ``floor(residual / 2)``; the trailing side gets the
    remainder.
    """
    left = (target - width) // 2
    top = (target - height) // 2
    return Padding(
        left=left,
        top=top,
        right=target - width - left,
        bottom=target - height - top,
    )


def parse_colour(colour: str | None, default: str = DEFAULT_BACKGROUND) -> tuple[int, int, int]:
    """Parse a Pillow colour string into an RGB triple.

    Raises:
        ValueError: If the colour cannot be parsed.
    """
    rgb = ImageColor.getrgb(colour or default)
    return rgb[0], rgb[1], rgb[2]


class CanvasNormalizer:
    """Normalize images onto a square canvas.

    Args:
        background: Default padding colour.
        jpeg_quality: JPEG quality for canvases without alpha.
    """

    def __init__(self, background: str = DEFAULT_BACKGROUND, jpeg_quality: int = 92) -> None:
        self._background = parse_colour(background)
        self._jpeg_quality = jpeg_quality

    def to_square_canvas(
        self,
        image: GeneratedImage | ResolvedReference,
        target_size: int,
        fit_mode: FitMode = FitMode.CONTAIN,
        background: str | None = None,
    ) -> Canvas:
        """Place ``image`` onto a ``target_size`` square canvas.

        Args:
            image: Source image bytes and MIME type.
            target_size: Edge length of the output canvas in pixels.
            fit_mode: Policy for non-square sources.
            background: Padding colour override for this call.

        Returns:
            Canvas with ``width == height == target_size``.

        Raises:
            ImageDecodeError: If the source bytes are not a readable image.
            ValueError: If ``target_size`` is not positive or the background
                colour cannot be parsed.
        """
        if target_size < 1:
            raise ValueError(f"target_size must be positive, got {target_size}")

        source = decode_image(image.data)
        alpha = has_alpha(source)
        source = source.convert("RGBA" if alpha else "RGB")
        width, height = source.size
        fill = parse_colour(background) if background else self._background

        if width == height:
            result = source.resize((target_size, target_size), RESAMPLE)
        elif fit_mode is FitMode.COVER:
            result = ImageOps.fit(source, (target_size, target_size), RESAMPLE, centering=(0.5, 0.5))
        elif fit_mode is FitMode.FILL:
            result = source.resize((target_size, target_size), RESAMPLE)
        else:
            result = self._contain(source, target_size, fill)

        logger.debug(
            "Canvas %dx%d -> %d (%s, alpha=%s)", width, height, target_size, fit_mode.value, alpha
        )
        return self._encode(result, alpha)

    def _contain(
        self, source: Image.Image, target: int, fill: tuple[int, int, int]
    ) -> Image.Image:
        resized = source.resize(contain_size(*source.size, target), RESAMPLE)
        pad = compute_padding(target, *resized.size)

        if source.mode == "RGBA":
            canvas = Image.new("RGBA", (target, target), fill + (255,))
        else:
            canvas = Image.new("RGB", (target, target), fill)
        # A mask-less paste copies the alpha channel of RGBA sources as-is.
        canvas.paste(resized, (pad.left, pad.top))
        return canvas

    def _encode(self, img: Image.Image, alpha: bool) -> Canvas:
        buffer = io.BytesIO()
        if alpha:
            img.save(buffer, format="PNG", optimize=True)
            mime_type = "image/png"
        else:
            img.save(buffer, format="JPEG", quality=self._jpeg_quality)
            mime_type = "image/jpeg"
        return Canvas(
            data=buffer.getvalue(),
            mime_type=mime_type,
            width=img.width,
            height=img.height,
        )
