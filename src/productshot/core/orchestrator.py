"""Entry point of the generation pipeline.

:class:`GenerationOrchestrator` validates a :class:`GenerationRequest`,
resolves its references, dispatches one generation trial per requested
output, and delivers each result on the path the caller asked for:

- **Square canvas** (no crop): :class:`CanvasNormalizer` places the image
  on a ``target_size`` square and the call returns ``list[Canvas]``.
- **Exact size** (cover crop): :class:`OutputEncoder` renders the image at
  ``target_width x target_height`` and the call returns ``list[OutputImage]``.

Concurrency
-----------
Reference fetches and output trials each run on a bounded thread pool.
Results keep input/trial order.

Partial Failure
---------------
A batch fails fast: as soon as one trial raises, trials that have not
started are cancelled and the error is raised. Images already produced by
other trials are discarded; the caller never receives a short list.

Usage Example
-------------
    >>> orchestrator = GenerationOrchestrator.from_config(config)
    >>> request = GenerationRequest(
    ...     prompt_text="studio shot of a red kettle",
    ...     references=[ref_a, ref_b],
    ...     output_count=2,
    ...     target_size=1024,
    ... )
    >>> canvases = orchestrator.generate(request)
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait

import httpx

from .canvas import CanvasNormalizer, parse_colour
from .config import ProductshotConfig
from .encoder import BmpPolicy, CodecRegistry, OutputEncoder
from .errors import (
    ImageDecodeError,
    InvalidRequestError,
    ReferenceDecodeError,
)
from .models import (
    Canvas,
    FitMode,
    GeneratedImage,
    GenerationRequest,
    OutputFormat,
    OutputImage,
    ResolvedReference,
)
from .model_dispatcher import ClientFactory, GenaiClientFactory, ModelDispatcher
from .reference_resolver import ReferenceResolver
from .tiers import TierRegistry

logger = logging.getLogger(__name__)


class GenerationOrchestrator:
    """Run complete generation requests.

    Args:
        config: Process configuration (prompt defaults, limits, canvas settings).
        resolver: Reference resolver.
        dispatcher: Backend dispatcher.
        normalizer: Square canvas normalizer.
        encoder: Exact-size encoder.
    """

    def __init__(
        self,
        config: ProductshotConfig,
        resolver: ReferenceResolver,
        dispatcher: ModelDispatcher,
        normalizer: CanvasNormalizer,
        encoder: OutputEncoder,
    ) -> None:
        self._config = config
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._normalizer = normalizer
        self._encoder = encoder

    @classmethod
    def from_config(
        cls,
        config: ProductshotConfig,
        client_factory: ClientFactory | None = None,
        http_client: httpx.Client | None = None,
        codecs: CodecRegistry | None = None,
    ) -> GenerationOrchestrator:
        """Wire every pipeline component from ``config``.

        The optional arguments replace the production backend client
        factory, the reference HTTP client, and the probed codec registry.
        """
        registry = TierRegistry.from_config(config)
        if client_factory is None:
            api_key = config.gemini_api_key.get_secret_value() if config.gemini_api_key else None
            client_factory = GenaiClientFactory(api_key, config.backend_timeout_seconds)

        return cls(
            config=config,
            resolver=ReferenceResolver(
                timeout=config.reference_timeout_seconds,
                client=http_client,
                max_workers=config.max_workers,
            ),
            dispatcher=ModelDispatcher(registry, client_factory),
            normalizer=CanvasNormalizer(
                background=config.canvas_background,
                jpeg_quality=config.jpeg_quality,
            ),
            encoder=OutputEncoder(
                codecs=codecs or CodecRegistry.probe(),
                bmp_policy=BmpPolicy(config.bmp_policy),
                jpeg_quality=config.output_jpeg_quality,
                webp_quality=config.webp_quality,
                background=config.canvas_background,
                max_dimension=config.max_output_dimension,
            ),
        )

    # -- Public interface ---------------------------------------------------

    def resolve_prompt(self, request: GenerationRequest) -> str:
        """Pick the prompt: override, then request prompt, then the configured default.

        Raises:
            InvalidRequestError: If every candidate is empty.
        """
        for candidate in (request.override_prompt_text, request.prompt_text, self._config.default_prompt):
            if candidate and candidate.strip():
                return candidate.strip()
        raise InvalidRequestError("A prompt is required")

    def output_count(self, request: GenerationRequest) -> int:
        """Requested output count clamped into ``1..max_output_count``."""
        return max(1, min(request.output_count, self._config.max_output_count))

    def generate(self, request: GenerationRequest) -> list[Canvas] | list[OutputImage]:
        """Run a full generation request.

        Returns:
            ``output_count`` canvases (square path) or output images
            (exact-size path), in trial order.

        Raises:
            InvalidRequestError: Before any network call, for a bad request.
            ReferenceFetchError, ReferenceDecodeError: For an unusable reference.
            DispatchFailedError: If a trial exhausted the fallback chain.
            ImageDecodeError: If a backend image could not be decoded.
            UnsupportedFormatError: If the output format cannot be produced.
        """
        prompt = self.resolve_prompt(request)
        count = self.output_count(request)
        self._validate(request)

        primary, _ = self._dispatcher.registry.chain(request.tier)
        cap = self._dispatcher.registry.reference_cap(primary)

        started = time.time()
        logger.info(
            "Generation started: outputs=%d references=%d tier=%s path=%s",
            count,
            len(request.references),
            primary.value,
            "exact" if request.exact_size else "canvas",
        )

        references = self._prepare_references(request.references, cap)
        results = self._run_trials(prompt, references, request, count)

        logger.info("Generation finished: %d image(s) in %.2fs", len(results), time.time() - started)
        return results

    def close(self) -> None:
        self._resolver.close()

    # -- Internals ----------------------------------------------------------

    def _validate(self, request: GenerationRequest) -> None:
        if not request.references and self._config.require_references:
            raise InvalidRequestError("At least one reference image is required")
        for index, ref in enumerate(request.references):
            if not ref.strip():
                raise InvalidRequestError(f"Reference {index} is empty")

        if request.exact_size:
            try:
                self._encoder.check_dimensions(request.target_width, request.target_height)
            except ValueError as exc:
                raise InvalidRequestError(str(exc)) from exc
            # Unsupported formats are rejected before any backend call.
            self._encoder.ensure_supported(request.output_format or OutputFormat.JPEG)
            return

        size = request.target_size or self._config.canvas_size
        if size > self._config.max_output_dimension:
            raise InvalidRequestError(
                f"target_size must be 1-{self._config.max_output_dimension}, got {size}"
            )
        if request.background_color:
            try:
                parse_colour(request.background_color)
            except ValueError as exc:
                raise InvalidRequestError(
                    f"Unknown background colour '{request.background_color}'"
                ) from exc

    def _prepare_references(self, references: list[str], cap: int) -> list[ResolvedReference]:
        resolved = self._resolver.resolve_many(references, cap)
        if not self._config.normalize_references:
            return resolved
        return [self._normalize_reference(ref) for ref in resolved]

    def _normalize_reference(self, ref: ResolvedReference) -> ResolvedReference:
        try:
            canvas = self._normalizer.to_square_canvas(
                ref, self._config.reference_canvas_size, FitMode.CONTAIN
            )
        except ImageDecodeError as exc:
            raise ReferenceDecodeError(ref.locator, exc.message) from exc
        return ResolvedReference(data=canvas.data, mime_type=canvas.mime_type, locator=ref.locator)

    def _run_trials(
        self,
        prompt: str,
        references: list[ResolvedReference],
        request: GenerationRequest,
        count: int,
    ) -> list[Canvas] | list[OutputImage]:
        if count == 1:
            return [self._trial(0, prompt, references, request)]

        workers = min(self._config.max_workers, count)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="trial") as pool:
            futures = [
                pool.submit(self._trial, index, prompt, references, request)
                for index in range(count)
            ]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            for future in futures:
                if future in done and future.exception() is not None:
                    logger.error("Trial %d failed; discarding batch", futures.index(future))
                    raise future.exception()
            return [future.result() for future in futures]

    def _trial(
        self,
        index: int,
        prompt: str,
        references: list[ResolvedReference],
        request: GenerationRequest,
    ) -> Canvas | OutputImage:
        generated = self._dispatcher.generate_with_fallback(prompt, references, request.tier)
        logger.debug("Trial %d generated by tier %s", index, generated.tier)
        return self._deliver(generated, request)

    def _deliver(self, generated: GeneratedImage, request: GenerationRequest) -> Canvas | OutputImage:
        if request.exact_size:
            return self._encoder.encode_exact(
                generated,
                request.target_width,
                request.target_height,
                request.output_format or OutputFormat.JPEG,
            )
        return self._normalizer.to_square_canvas(
            generated,
            request.target_size or self._config.canvas_size,
            request.fit_mode,
            request.background_color,
        )

