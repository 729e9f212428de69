"""Shared pytest fixtures for Productshot tests."""

import base64
import io
import shutil
import tempfile
import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Generator

import pytest
from PIL import Image

from productshot.core.config import ProductshotConfig
from productshot.core.encoder import CodecRegistry
from productshot.core.orchestrator import GenerationOrchestrator


# ---------------------------------------------------------------------------
# Image helpers.
# ---------------------------------------------------------------------------


def encode_image(
    width: int,
    height: int,
    fmt: str = "PNG",
    mode: str = "RGB",
    color: Any = (200, 30, 30),
) -> bytes:
    """Create an in-memory image of the given size and return its bytes."""
    img = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


# ---------------------------------------------------------------------------
# Fake Gemini backend.
# ---------------------------------------------------------------------------


def image_part(data: Any, mime_type: str = "image/png") -> SimpleNamespace:
    return SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type=mime_type))


def text_part(text: str) -> SimpleNamespace:
    return SimpleNamespace(text=text, inline_data=None)


def make_response(*parts: SimpleNamespace, finish_reason: Any = None, block_reason: Any = None):
    """Build an object shaped like a ``GenerateContentResponse``."""
    candidates = []
    if parts or finish_reason:
        candidates.append(
            SimpleNamespace(content=SimpleNamespace(parts=list(parts)), finish_reason=finish_reason)
        )
    return SimpleNamespace(
        candidates=candidates,
        prompt_feedback=SimpleNamespace(block_reason=block_reason),
    )


class FakeGenaiClient:
    """Stand-in for ``genai.Client`` with scripted per-model behaviour.

    ``behaviours`` maps a model id to either a response object, an exception
    instance to raise, or a callable ``(contents, config) -> response``.
    Every call is recorded in ``calls``.
    """

    def __init__(self, behaviours: dict[str, Any]) -> None:
        self.behaviours = behaviours
        self.calls: list[dict] = []
        self.models = self
        self._lock = threading.Lock()

    def generate_content(self, model: str, contents: Any, config: Any) -> Any:
        with self._lock:
            self.calls.append({"model": model, "contents": contents, "config": config})
        behaviour = self.behaviours[model]
        if isinstance(behaviour, Exception):
            raise behaviour
        if callable(behaviour):
            return behaviour(contents, config)
        return behaviour

    def calls_for(self, model: str) -> list[dict]:
        return [call for call in self.calls if call["model"] == model]


# ---------------------------------------------------------------------------
# Fixtures.
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config() -> ProductshotConfig:
    """Configuration with fixed model ids and no .env lookup.

    Returns:
        ProductshotConfig instance for testing
    """
    return ProductshotConfig(
        _env_file=None,
        gemini_api_key="test-key",
        standard_model_id="std-model",
        pro_model_id="pro-model",
        primary_tier="pro",
        fallback_tier="standard",
        canvas_size=1024,
        bmp_policy="manual",
        max_workers=4,
    )


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    """Factory fixture returning encoded image bytes."""
    return encode_image


@pytest.fixture
def data_url() -> Callable[..., str]:
    """Factory fixture turning bytes into an inline data URL."""
    return to_data_url


@pytest.fixture
def backend_image() -> bytes:
    """A landscape PNG as a backend would return it."""
    return encode_image(1600, 900, "PNG")


@pytest.fixture
def genai_fakes() -> SimpleNamespace:
    """Builders for fake backend clients and responses."""
    return SimpleNamespace(
        client=FakeGenaiClient,
        response=make_response,
        image_part=image_part,
        text_part=text_part,
    )


@pytest.fixture
def fake_client(backend_image: bytes) -> FakeGenaiClient:
    """A backend where both tiers succeed with ``backend_image``."""
    response = make_response(text_part("Here is your image."), image_part(backend_image))
    return FakeGenaiClient({"pro-model": response, "std-model": response})


@pytest.fixture
def build_orchestrator(test_config: ProductshotConfig):
    """Factory fixture wiring an orchestrator around a fake backend client.

    Args to the returned callable:
        client: The fake client every API version resolves to.
        http_client: Optional ``httpx.Client`` for remote references.
        **overrides: Config fields to override.
    """
    created: list[GenerationOrchestrator] = []

    def _build(client: Any, http_client: Any = None, **overrides: Any) -> GenerationOrchestrator:
        cfg = test_config.model_copy(update=overrides)
        orchestrator = GenerationOrchestrator.from_config(
            cfg,
            client_factory=lambda api_version: client,
            http_client=http_client,
            codecs=CodecRegistry.probe(),
        )
        created.append(orchestrator)
        return orchestrator

    yield _build

    for orchestrator in created:
        orchestrator.close()


@pytest.fixture
def test_client(monkeypatch, build_orchestrator, fake_client: FakeGenaiClient):
    """FastAPI TestClient whose pipeline talks to ``fake_client``.

    Tests that need a failing backend can edit ``fake_client.behaviours``
    before sending a request.
    """
    from fastapi.testclient import TestClient

    import productshot.api.main as api_main

    orchestrator = build_orchestrator(fake_client)
    monkeypatch.setattr(api_main, "build_orchestrator", lambda: orchestrator)

    with TestClient(api_main.app) as client:
        yield client

