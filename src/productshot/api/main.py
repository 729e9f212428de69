"""Productshot — FastAPI Application.

This module is the HTTP entry point. It defines the FastAPI ``app``
instance, the generation routes, and the ``main()`` CLI function that
launches the uvicorn server. The HTTP layer only parses and validates
requests; all image work happens in
:class:`~productshot.core.orchestrator.GenerationOrchestrator`.

Endpoints
---------
========  =========================  =========================================
Method    Path                       Purpose
========  =========================  =========================================
GET       ``/api/health``            Health check
POST      ``/api/generate``          Square no-crop canvases (1–6 images)
POST      ``/api/generate/exact``    Exact-size cover-cropped images
========  =========================  =========================================

Error Responses
---------------
Pipeline errors are returned as ``{"ok": false, "error": ..., "stage": ...}``
with a status code chosen by error type (see ``_STATUS_BY_ERROR``).
Malformed JSON and schema violations never reach the pipeline; FastAPI
answers them with its standard 422 response.

Usage
-----
CLI (installed entry point)::

    productshot

Direct invocation::

    python -m productshot.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from productshot import __version__
from productshot.api.models import (
    GenerateCanvasRequest,
    GenerateExactRequest,
    GenerateResponse,
    ImagePayload,
)
from productshot.core.config import config
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
from productshot.core.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[ProductshotError], int] = {
    InvalidRequestError: 400,
    ReferenceFetchError: 422,
    ReferenceDecodeError: 422,
    UnsupportedFormatError: 415,
    DispatchFailedError: 502,
    BackendCallError: 502,
    NoImageReturnedError: 502,
    ImageDecodeError: 500,
}


def build_orchestrator() -> GenerationOrchestrator:
    """Construct the process-wide orchestrator from the global configuration."""
    return GenerationOrchestrator.from_config(config)


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the pipeline on startup and release its HTTP client on shutdown.

    The tier registry and backend clients are created exactly once here and
    are read-only for the lifetime of the process.
    """
    app.state.orchestrator = build_orchestrator()
    logger.info("Generation pipeline initialised.")

    yield

    app.state.orchestrator.close()
    logger.info("Generation pipeline closed.")


app = FastAPI(
    title="Productshot",
    description="Reference-guided product image generation with exact-size output.",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(ProductshotError)
async def pipeline_error_handler(request: Request, exc: ProductshotError) -> JSONResponse:
    """Translate pipeline errors into JSON error responses."""
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        500,
    )
    if status_code >= 500:
        logger.error("%s %s failed at %s: %s", request.method, request.url.path, exc.stage, exc)
    else:
        logger.info("%s %s rejected at %s: %s", request.method, request.url.path, exc.stage, exc)
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": exc.message, "stage": exc.stage},
    )


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def health() -> dict:
    """Return a liveness payload with the API version."""
    return {"ok": True, "endpoint": "/api/generate", "version": __version__}


@app.post("/api/generate", response_model=GenerateResponse)
async def generate_canvases(req: GenerateCanvasRequest, request: Request) -> GenerateResponse:
    """Generate product images delivered on a square canvas without cropping.

    Args:
        req: Validated :class:`GenerateCanvasRequest` payload.

    Returns:
        The prompt actually used and one image per requested output.
    """
    orchestrator: GenerationOrchestrator = request.app.state.orchestrator
    generation = req.to_generation_request()

    canvases = await run_in_threadpool(orchestrator.generate, generation)
    return GenerateResponse(
        prompt_used=orchestrator.resolve_prompt(generation),
        images=[ImagePayload.from_image(canvas) for canvas in canvases],
    )


@app.post("/api/generate/exact", response_model=GenerateResponse)
async def generate_exact(req: GenerateExactRequest, request: Request) -> GenerateResponse:
    """Generate product images at an exact size and format (cover crop).

    Args:
        req: Validated :class:`GenerateExactRequest` payload.

    Returns:
        The prompt actually used and one image per requested output, each
        exactly ``target_width x target_height``.
    """
    orchestrator: GenerationOrchestrator = request.app.state.orchestrator
    generation = req.to_generation_request()

    images = await run_in_threadpool(orchestrator.generate, generation)
    return GenerateResponse(
        prompt_used=orchestrator.resolve_prompt(generation),
        images=[ImagePayload.from_image(image) for image in images],
    )


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Configure logging and launch the uvicorn ASGI server.

    Host, port and log level come from :data:`~productshot.core.config.config`
    (``PRODUCTSHOT_SERVER_HOST``, ``PRODUCTSHOT_SERVER_PORT``,
    ``PRODUCTSHOT_LOG_LEVEL``).
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "productshot.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
