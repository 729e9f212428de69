"""Data models for the generation pipeline.

Two kinds of models live here:

- :class:`GenerationRequest` is a validated Pydantic model. It is built by
  the HTTP layer (or any other caller) before the pipeline runs and rejects
  wrongly typed values instead of coercing them.
- The image payloads (:class:`ResolvedReference`, :class:`GeneratedImage`,
  :class:`Canvas`, :class:`OutputImage`) are small frozen dataclasses that
  only live for the duration of one generation call.
"""

from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import InvalidRequestError
from .tiers import Tier

MIN_OUTPUT_COUNT = 1
MAX_OUTPUT_COUNT = 6


class FitMode(str, Enum):
    """Resize policy used when placing an image onto a target frame."""

    CONTAIN = "contain"
    COVER = "cover"
    FILL = "fill"


class OutputFormat(str, Enum):
    """Output encodings supported by the exact-size path."""

    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    BMP = "bmp"

    @classmethod
    def parse(cls, value: str | OutputFormat) -> OutputFormat:
        """Parse a format name, accepting ``jpg`` as an alias of ``jpeg``."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        if name == "jpg":
            name = "jpeg"
        return cls(name)

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"

    @property
    def pillow_format(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class ResolvedReference:
    """Raw bytes of one reference image plus its best-guess MIME type."""

    data: bytes
    mime_type: str
    locator: str = ""


@dataclass(frozen=True)
class GeneratedImage:
    """Raw image returned by a backend tier, before any normalization."""

    data: bytes
    mime_type: str
    tier: Tier | None = None


@dataclass(frozen=True)
class Canvas:
    """Square image produced by the no-crop normalization path."""

    data: bytes
    mime_type: str
    width: int
    height: int

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class OutputImage:
    """Image encoded at exactly the caller's requested size and format."""

    data: bytes
    mime_type: str
    width: int
    height: int

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class GenerationRequest(BaseModel):
    """A validated generation request.

    Exactly one delivery path is selected per request:

    - **Square canvas** (default): each generated image is normalized onto a
      ``target_size`` square using ``fit_mode`` and ``background_color``.
    - **Exact size**: when ``target_width`` and ``target_height`` are given,
      each generated image is cover-cropped to that size and encoded as
      ``output_format``.

    ``output_count`` is clamped into ``1..6``; the orchestrator clamps it
    again against the configured maximum.

    Attributes:
        prompt_text: Prompt describing the desired image.
        override_prompt_text: Prompt that takes precedence over
            ``prompt_text`` when non-empty.
        references: Inline ``data:image/...;base64,`` payloads or remote URLs.
        tier: Requested backend tier, or ``None`` for the configured primary.
        output_count: Number of images to generate.
        target_size: Square canvas size (``None`` for the configured default).
        fit_mode: Canvas fit policy.
        background_color: Canvas padding colour (``None`` for the default).
        target_width: Exact output width.
        target_height: Exact output height.
        output_format: Exact output format (``jpeg`` when omitted).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    prompt_text: StrictStr = ""
    override_prompt_text: StrictStr | None = None
    references: list[StrictStr] = Field(default_factory=list)
    tier: Tier | None = None
    output_count: StrictInt = 1

    target_size: StrictInt | None = Field(default=None, ge=1)
    fit_mode: FitMode = FitMode.CONTAIN
    background_color: StrictStr | None = None

    target_width: StrictInt | None = Field(default=None, ge=1)
    target_height: StrictInt | None = Field(default=None, ge=1)
    output_format: OutputFormat | None = None

    @field_validator("output_count")
    @classmethod
    def _clamp_output_count(cls, value: int) -> int:
        return max(MIN_OUTPUT_COUNT, min(value, MAX_OUTPUT_COUNT))

    @field_validator("output_format", mode="before")
    @classmethod
    def _parse_format(cls, value: Any) -> Any:
        if value is None or isinstance(value, OutputFormat):
            return value
        if not isinstance(value, str):
            raise ValueError("output_format must be a string")
        return OutputFormat.parse(value)

    @model_validator(mode="after")
    def _check_delivery_path(self) -> GenerationRequest:
        if (self.target_width is None) != (self.target_height is None):
            raise ValueError("target_width and target_height must be given together")
        if self.output_format is not None and self.target_width is None:
            raise ValueError("output_format requires target_width and target_height")
        return self

    @property
    def exact_size(self) -> bool:
        """Whether the request asks for the exact-size output path."""
        return self.target_width is not None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> GenerationRequest:
        """Validate a plain mapping, raising :class:`InvalidRequestError` on failure."""
        try:
            return cls.model_validate(dict(payload))
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
                for err in exc.errors()
            )
            raise InvalidRequestError(f"Invalid generation request: {problems}") from exc
