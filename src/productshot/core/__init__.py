"""Core generation-and-normalization pipeline.

This package contains every component of the pipeline:

- **config**: Configuration management using Pydantic Settings
- **tiers**: Backend tier enumeration and the read-only tier registry
- **reference_resolver**: Inline/remote reference ingestion
- **model_dispatcher**: Tiered Gemini dispatch with a single fallback hop
- **canvas**: Square canvas normalization (contain/cover/fill)
- **encoder**: Exact-size output encoding and the codec registry
- **orchestrator**: The entry point tying the components together

Data flows strictly downward: orchestrator -> resolver -> dispatcher ->
normalizer/encoder. Apart from the tier registry, no component holds state
across requests.

Usage Example
-------------
    from productshot.core import GenerationOrchestrator, GenerationRequest, config

    orchestrator = GenerationOrchestrator.from_config(config)
    canvases = orchestrator.generate(
        GenerationRequest(
            prompt_text="studio shot of a red kettle",
            references=["https://example.com/kettle.jpg"],
            output_count=2,
        )
    )
"""

from productshot.core.canvas import CanvasNormalizer
from productshot.core.config import ProductshotConfig, config
from productshot.core.encoder import BmpPolicy, CodecRegistry, OutputEncoder
from productshot.core.errors import (
    BackendCallError,
    DispatchFailedError,
    ImageDecodeError,
    InvalidRequestError,
    NoImageReturnedError,
    ProductshotError,
    ReferenceDecodeError,
    ReferenceFetchError,
    UnsupportedFormatError,
)
from productshot.core.model_dispatcher import GenaiClientFactory, ModelDispatcher
from productshot.core.models import (
    Canvas,
    FitMode,
    GeneratedImage,
    GenerationRequest,
    OutputFormat,
    OutputImage,
    ResolvedReference,
)
from productshot.core.orchestrator import GenerationOrchestrator
from productshot.core.reference_resolver import ReferenceResolver
from productshot.core.tiers import BackendTierConfig, Tier, TierRegistry

__all__ = [
    "BackendCallError",
    "BackendTierConfig",
    "BmpPolicy",
    "Canvas",
    "CanvasNormalizer",
    "CodecRegistry",
    "DispatchFailedError",
    "FitMode",
    "GenaiClientFactory",
    "GeneratedImage",
    "GenerationOrchestrator",
    "GenerationRequest",
    "ImageDecodeError",
    "InvalidRequestError",
    "ModelDispatcher",
    "NoImageReturnedError",
    "OutputEncoder",
    "OutputFormat",
    "OutputImage",
    "ProductshotConfig",
    "ProductshotError",
    "ReferenceDecodeError",
    "ReferenceFetchError",
    "ReferenceResolver",
    "ResolvedReference",
    "Tier",
    "TierRegistry",
    "UnsupportedFormatError",
    "config",
]
