"""Typed errors raised by the generation pipeline.

Every error carries the pipeline ``stage`` it came from so that the HTTP
layer (or any other caller) can build a user-facing message without
parsing exception text.
"""

from __future__ import annotations


class ProductshotError(Exception):
    """Base class for all pipeline errors."""

    stage: str = "pipeline"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(ProductshotError):
    """The request was rejected before any backend call was made."""

    stage = "request"


class ReferenceFetchError(ProductshotError):
    """A remote reference could not be downloaded."""

    stage = "reference"

    def __init__(self, locator: str, reason: str) -> None:
        super().__init__(f"Could not fetch reference '{locator}': {reason}")
        self.locator = locator
        self.reason = reason


class ReferenceDecodeError(ProductshotError):
    """An inline reference payload could not be decoded."""

    stage = "reference"

    def __init__(self, locator: str, reason: str) -> None:
        super().__init__(f"Could not decode reference '{locator}': {reason}")
        self.locator = locator
        self.reason = reason


class NoImageReturnedError(ProductshotError):
    """The backend answered but the response held no image part."""

    stage = "dispatch"

    def __init__(self, tier: str, detail: str = "") -> None:
        message = f"Tier '{tier}' returned no image"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.tier = tier


class BackendCallError(ProductshotError):
    """Transport, HTTP or SDK failure while calling a tier endpoint."""

    stage = "dispatch"

    def __init__(self, tier: str, reason: str) -> None:
        super().__init__(f"Tier '{tier}' call failed: {reason}")
        self.tier = tier
        self.reason = reason


class DispatchFailedError(ProductshotError):
    """Every tier in the fallback chain failed.

    ``primary_error`` and ``fallback_error`` hold the underlying errors;
    ``fallback_error`` is ``None`` when no fallback tier was configured.
    """

    stage = "dispatch"

    def __init__(
        self,
        primary_error: ProductshotError,
        fallback_error: ProductshotError | None = None,
    ) -> None:
        if fallback_error is None:
            message = f"Generation failed: {primary_error.message}"
        else:
            message = (
                f"Generation failed: primary: {primary_error.message}; "
                f"fallback: {fallback_error.message}"
            )
        super().__init__(message)
        self.primary_error = primary_error
        self.fallback_error = fallback_error


class ImageDecodeError(ProductshotError):
    """Image bytes handed to normalization or encoding are not a readable image.

    ``stage`` is ``"normalize"`` on the canvas path and ``"encode"`` on the
    exact-size path.
    """

    stage = "normalize"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class UnsupportedFormatError(ProductshotError):
    """The requested output format cannot be produced."""

    stage = "encode"

    def __init__(self, fmt: str, reason: str) -> None:
        super().__init__(f"Output format '{fmt}' is not supported: {reason}")
        self.format = fmt
