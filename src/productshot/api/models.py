"""Pydantic request and response models for the Productshot API.

These models define the JSON schema for every API endpoint. FastAPI uses
them for automatic request validation, serialisation, and OpenAPI
documentation generation. Request bodies are strict: a string where an
integer is expected is rejected rather than coerced.

Models
------
GenerateCanvasRequest
    Payload for ``POST /api/generate`` — square no-crop delivery.
GenerateExactRequest
    Payload for ``POST /api/generate/exact`` — exact-size cover-crop delivery.
ImagePayload
    One encoded image in a response.
GenerateResponse
    Response body of both generation endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from productshot.core.models import Canvas, FitMode, GenerationRequest, OutputImage
from productshot.core.tiers import Tier


class _GenerateBase(BaseModel):
    """Fields shared by both generation endpoints.

    Attributes:
        prompt_text: Prompt describing the product shot.
        override_prompt_text: Prompt that wins over ``prompt_text`` when set.
        references: Inline ``data:image/...;base64,`` payloads or image URLs.
            Only the first five (or the tier's cap) are used.
        tier: ``"standard"`` or ``"pro"``. Omit to use the configured primary.
        output_count: Number of images to generate, clamped to 1–6.
    """

    model_config = ConfigDict(extra="forbid")

    prompt_text: StrictStr = Field(
        default="",
        description="Prompt describing the desired image.",
    )
    override_prompt_text: StrictStr | None = Field(
        default=None,
        description="Prompt that takes precedence over prompt_text.",
    )
    references: list[StrictStr] = Field(
        default_factory=list,
        description="Reference images as data URLs or remote URLs.",
    )
    tier: Tier | None = Field(
        default=None,
        description="Backend tier: 'standard' or 'pro'.",
    )
    output_count: StrictInt = Field(
        default=1,
        description="Number of images to generate (clamped to 1–6).",
    )


class GenerateCanvasRequest(_GenerateBase):
    """Request body for ``POST /api/generate``.

    Attributes:
        target_size: Edge length of the square canvas. ``None`` uses the
            configured default (1024).
        fit_mode: ``"contain"`` (pad, default), ``"cover"`` (crop) or
            ``"fill"`` (stretch).
        background_color: Padding colour, e.g. ``"#ffffff"``.
    """

    target_size: StrictInt | None = Field(
        default=None,
        ge=1,
        description="Square canvas size in pixels.",
    )
    fit_mode: FitMode = Field(
        default=FitMode.CONTAIN,
        description="Canvas fit policy: contain, cover or fill.",
    )
    background_color: StrictStr | None = Field(
        default=None,
        description="Padding colour for the contain policy.",
    )

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest.from_payload(
            {
                "prompt_text": self.prompt_text,
                "override_prompt_text": self.override_prompt_text,
                "references": self.references,
                "tier": self.tier,
                "output_count": self.output_count,
                "target_size": self.target_size,
                "fit_mode": self.fit_mode,
                "background_color": self.background_color,
            }
        )


class GenerateExactRequest(_GenerateBase):
    """Request body for ``POST /api/generate/exact``.

    Attributes:
        target_width: Exact output width in pixels.
        target_height: Exact output height in pixels.
        output_format: ``"jpeg"`` (or ``"jpg"``), ``"png"``, ``"webp"`` or ``"bmp"``.
    """

    target_width: StrictInt = Field(..., ge=1, description="Output width in pixels.")
    target_height: StrictInt = Field(..., ge=1, description="Output height in pixels.")
    output_format: StrictStr = Field(
        default="jpeg",
        description="Output format: jpeg, png, webp or bmp.",
    )

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest.from_payload(
            {
                "prompt_text": self.prompt_text,
                "override_prompt_text": self.override_prompt_text,
                "references": self.references,
                "tier": self.tier,
                "output_count": self.output_count,
                "target_width": self.target_width,
                "target_height": self.target_height,
                "output_format": self.output_format,
            }
        )


class ImagePayload(BaseModel):
    """A single encoded image."""

    base64: str
    mime_type: str
    width: int
    height: int

    @classmethod
    def from_image(cls, image: Canvas | OutputImage) -> ImagePayload:
        return cls(
            base64=image.to_base64(),
            mime_type=image.mime_type,
            width=image.width,
            height=image.height,
        )


class GenerateResponse(BaseModel):
    """Response body of the generation endpoints."""

    ok: bool = True
    prompt_used: str
    images: list[ImagePayload]

