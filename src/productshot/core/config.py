"""Configuration management for Productshot.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PRODUCTSHOT_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PRODUCTSHOT_* prefix)
2. .env file in the project root
3. Default values defined in ProductshotConfig

The Gemini API key is the one exception to the prefix rule: it is also read
from the plain ``GEMINI_API_KEY`` and ``GOOGLE_API_KEY`` variables so that
existing deployments keep working.

Example .env file:
    GEMINI_API_KEY=...
    PRODUCTSHOT_PRIMARY_TIER=pro
    PRODUCTSHOT_FALLBACK_TIER=standard
    PRODUCTSHOT_CANVAS_BACKGROUND=#ffffff
    PRODUCTSHOT_BMP_POLICY=manual

Global Configuration Instance
------------------------------
A global ``config`` instance is created at module import time for the CLI
and HTTP entry points. Pipeline components never read it directly: the
entry point builds a :class:`~productshot.core.tiers.TierRegistry` and the
other components from it and passes them down explicitly.

    from productshot.core.config import config
    from productshot.core.tiers import TierRegistry

    registry = TierRegistry.from_config(config)

Backend Tiers
-------------
Two tiers are configured, ``standard`` and ``pro``. Each tier maps to a
Gemini model identifier, an API version and a reference-image cap. The
``primary_tier`` is tried first; ``fallback_tier`` is tried once if the
primary fails. A fallback equal to the primary means "no fallback".

See Also
--------
- TierRegistry: Read-only registry built from this configuration
- OutputEncoder: Consumer of the BMP policy and quality settings
"""

from typing import Literal

from PIL import ImageColor
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .tiers import Tier

BmpPolicyName = Literal["native", "substitute_png", "manual", "fail"]


class ProductshotConfig(BaseSettings):
    """Main configuration for Productshot.

    Attributes
    ----------
    Backend Settings:
        gemini_api_key : SecretStr | None
            API key for the Gemini backend
        standard_model_id / pro_model_id : str
            Concrete Gemini model identifiers for each tier
        standard_api_version / pro_api_version : str
            API version selector passed to the client for each tier
        standard_max_references / pro_max_references : int
            Number of reference images each tier accepts (excess is dropped)
        primary_tier / fallback_tier : Tier
            Fallback chain used by the dispatcher
        backend_timeout_seconds : float
            Timeout applied to each generation call

    Request Settings:
        default_prompt : str
            Prompt used when the caller supplies none
        max_output_count : int
            Upper clamp for the number of images per request
        require_references : bool
            Reject requests without reference images
        reference_timeout_seconds : float
            Timeout for fetching a remote reference

    Image Settings:
        normalize_references : bool
            Pad references onto a square canvas before dispatch
        reference_canvas_size : int
            Canvas size used for reference normalization
        canvas_size : int
            Default square canvas size for the no-crop output path
        canvas_background : str
            Padding colour (any Pillow colour string)
        jpeg_quality / output_jpeg_quality / webp_quality : int
            Encoder quality settings for canvas and exact-size output
        max_output_dimension : int
            Largest width/height accepted on the exact-size path
        bmp_policy : Literal["native", "substitute_png", "manual", "fail"]
            How BMP output is produced (see OutputEncoder)

    Runtime Settings:
        max_workers : int
            Thread pool bound for reference fetches and output trials
        server_host / server_port : str / int
            uvicorn bind address
        log_level : str
            Root logging level for the CLI entry point

    Examples
    --------
        >>> custom = ProductshotConfig(primary_tier="standard", fallback_tier=None)
        >>> custom.primary_tier
        <Tier.STANDARD: 'standard'>
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PRODUCTSHOT_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Backend credentials and tiers
    gemini_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "gemini_api_key",
            "PRODUCTSHOT_GEMINI_API_KEY",
            "GEMINI_API_KEY",
            "GOOGLE_API_KEY",
        ),
        description="API key for the Gemini backend",
    )
    standard_model_id: str = Field(
        default="gemini-2.5-flash-image",
        description="Gemini model identifier for the standard tier",
    )
    pro_model_id: str = Field(
        default="gemini-3-pro-image-preview",
        description="Gemini model identifier for the pro tier",
    )
    standard_api_version: str = Field(default="v1beta")
    pro_api_version: str = Field(default="v1beta")
    standard_max_references: int = Field(default=5, ge=1, le=6)
    pro_max_references: int = Field(default=5, ge=1, le=6)
    primary_tier: Tier = Field(
        default=Tier.PRO,
        description="Tier tried first for every output image",
    )
    fallback_tier: Tier | None = Field(
        default=Tier.STANDARD,
        description="Tier tried once when the primary fails (None disables fallback)",
    )
    backend_timeout_seconds: float = Field(default=120.0, gt=0)

    # Request handling
    default_prompt: str = Field(
        default="Generate one high-quality e-commerce product image using the references.",
        description="Prompt used when the request carries none",
    )
    max_output_count: int = Field(default=6, ge=1, le=6)
    require_references: bool = Field(
        default=True,
        description="Reject requests that carry no reference images",
    )
    reference_timeout_seconds: float = Field(default=20.0, gt=0)

    # Image normalization and encoding
    normalize_references: bool = Field(
        default=True,
        description="Pad references onto a square canvas before dispatch",
    )
    reference_canvas_size: int = Field(default=1024, ge=64, le=4096)
    canvas_size: int = Field(default=1024, ge=64, le=4096)
    canvas_background: str = Field(
        default="#ffffff",
        description="Padding colour for the square canvas",
    )
    jpeg_quality: int = Field(default=92, ge=1, le=100)
    output_jpeg_quality: int = Field(default=95, ge=1, le=100)
    webp_quality: int = Field(default=80, ge=1, le=100)
    max_output_dimension: int = Field(default=4096, ge=64, le=16384)
    bmp_policy: BmpPolicyName = Field(
        default="native",
        description="BMP output strategy: native, substitute_png, manual or fail",
    )

    # Runtime
    max_workers: int = Field(default=6, ge=1, le=32)
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=7860, ge=1024, le=65535)
    log_level: str = Field(default="INFO")

    @field_validator("canvas_background")
    @classmethod
    def _check_colour(cls, value: str) -> str:
        # Raises ValueError for colours Pillow cannot parse.
        ImageColor.getrgb(value)
        return value

    @field_validator("fallback_tier", mode="before")
    @classmethod
    def _empty_fallback(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("", "none"):
            return None
        return value


# Global configuration instance for the entry points.
config = ProductshotConfig()
