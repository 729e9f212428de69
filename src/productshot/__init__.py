"""Productshot - reference-guided product image generation."""

__version__ = "0.1.0"

from productshot.core.config import ProductshotConfig, config
from productshot.core.models import GenerationRequest
from productshot.core.orchestrator import GenerationOrchestrator

__all__ = [
    "GenerationOrchestrator",
    "GenerationRequest",
    "ProductshotConfig",
    "config",
]
