"""Tiered dispatch of generation requests to the Gemini backend.

The dispatcher turns a prompt and a list of resolved reference images into a
single multi-part ``generate_content`` call against the concrete model of a
:class:`~productshot.core.tiers.Tier`, then extracts the first image part
from the response.

Fallback Protocol
-----------------
:meth:`ModelDispatcher.generate_with_fallback` walks a two-step chain:

1. **TryPrimary**: call the primary tier. Success ends the chain.
2. **TryFallback**: only when a distinct fallback tier is configured, call
   it once. Success ends the chain.
3. **Failed**: raise :class:`~productshot.core.errors.DispatchFailedError`
   carrying both underlying errors.

Only :class:`BackendCallError` and :class:`NoImageReturnedError` trigger the
fallback hop. There is no further retry and no backoff.

Backend Client
--------------
Clients are produced by a factory callable keyed by API version, so the
dispatcher never reaches for global credentials. :class:`GenaiClientFactory`
is the production factory; tests pass a stub that returns a fake client
exposing ``models.generate_content(model=..., contents=..., config=...)``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from collections.abc import Callable, Sequence
from typing import Any

from google import genai
from google.genai import types

from .errors import BackendCallError, DispatchFailedError, NoImageReturnedError, ProductshotError
from .models import GeneratedImage, ResolvedReference
from .tiers import Tier, TierRegistry

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], Any]


class GenaiClientFactory:
    """Create and cache one ``genai.Client`` per API version.

    Args:
        api_key: Gemini API key. ``None`` lets the SDK read its own
            environment variables.
        timeout_seconds: Per-request timeout passed to the SDK.
    """

    def __init__(self, api_key: str | None, timeout_seconds: float = 120.0) -> None:
        self._api_key = api_key
        self._timeout_ms = int(timeout_seconds * 1000)
        self._clients: dict[str, genai.Client] = {}
        self._lock = threading.Lock()

    def __call__(self, api_version: str) -> genai.Client:
        with self._lock:
            client = self._clients.get(api_version)
            if client is None:
                logger.info("Creating Gemini client (api_version=%s)", api_version)
                client = genai.Client(
                    api_key=self._api_key,
                    http_options=types.HttpOptions(
                        api_version=api_version,
                        timeout=self._timeout_ms,
                    ),
                )
                self._clients[api_version] = client
            return client


def build_contents(prompt: str, references: Sequence[ResolvedReference]) -> list[types.Content]:
    """Build the request body: the prompt first, then one inline part per reference."""
    parts = [types.Part.from_text(text=prompt)]
    for ref in references:
        parts.append(types.Part.from_bytes(data=ref.data, mime_type=ref.mime_type))
    return [types.Content(role="user", parts=parts)]


def build_generation_config() -> types.GenerateContentConfig:
    return types.GenerateContentConfig(
        response_modalities=["TEXT", "IMAGE"],
        candidate_count=1,
    )


def extract_image(response: Any) -> tuple[bytes, str] | None:
    """Return ``(data, mime_type)`` of the first image part in ``response``.

    Parts whose inline data is empty or whose MIME type does not start with
    ``image/`` are skipped. Base64 text payloads are decoded; parts whose
    text payload is not valid base64 are skipped as well.
    """
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is None:
                continue
            mime_type = getattr(inline, "mime_type", None) or ""
            data = getattr(inline, "data", None)
            if not mime_type.startswith("image/") or not data:
                continue
            if isinstance(data, str):
                try:
                    data = base64.b64decode(data, validate=True)
                except (binascii.Error, ValueError) as exc:
                    logger.warning("Skipping %s part with undecodable payload: %s", mime_type, exc)
                    continue
                if not data:
                    continue
            return data, mime_type
    return None


def describe_empty_response(response: Any) -> str:
    """Summarize why a response carried no image, for error messages."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None)
    if block_reason:
        return f"prompt blocked ({block_reason})"

    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return "no candidates"

    first = candidates[0]
    fragments: list[str] = []
    for part in getattr(getattr(first, "content", None), "parts", None) or []:
        text = getattr(part, "text", None)
        if isinstance(text, str) and text.strip():
            fragments.append(text.strip())
    if fragments:
        text = " ".join(fragments)
        return f"model returned text instead of an image: {text[:200]}"

    finish_reason = getattr(first, "finish_reason", None)
    if finish_reason:
        return f"finish reason {finish_reason}"
    return "no image parts"


class ModelDispatcher:
    """Send generation requests to backend tiers.

    Args:
        registry: Read-only tier configuration.
        client_factory: Callable returning a client for an API version.
    """

    def __init__(self, registry: TierRegistry, client_factory: ClientFactory) -> None:
        self._registry = registry
        self._client_factory = client_factory

    @property
    def registry(self) -> TierRegistry:
        return self._registry

    def generate(
        self,
        prompt: str,
        references: Sequence[ResolvedReference],
        tier: Tier,
    ) -> GeneratedImage:
        """Run a single generation call against ``tier``.

        References beyond the tier's cap are not sent.

        Raises:
            BackendCallError: If the call itself fails.
            NoImageReturnedError: If the response holds no image part.
        """
        tier_config = self._registry.get(tier)
        sent = list(references[: tier_config.max_references])

        logger.info(
            "Dispatching to tier=%s model=%s references=%d prompt=%s",
            tier.value,
            tier_config.model_id,
            len(sent),
            prompt[:100] + "..." if len(prompt) > 100 else prompt,
        )

        try:
            client = self._client_factory(tier_config.api_version)
            response = client.models.generate_content(
                model=tier_config.model_id,
                contents=build_contents(prompt, sent),
                config=build_generation_config(),
            )
        except Exception as exc:
            raise BackendCallError(tier.value, f"{type(exc).__name__}: {exc}") from exc

        extracted = extract_image(response)
        if extracted is None:
            raise NoImageReturnedError(tier.value, describe_empty_response(response))

        data, mime_type = extracted
        logger.info("Tier %s returned %s (%d bytes)", tier.value, mime_type, len(data))
        return GeneratedImage(data=data, mime_type=mime_type, tier=tier)

    def generate_with_fallback(
        self,
        prompt: str,
        references: Sequence[ResolvedReference],
        tier: Tier | None = None,
    ) -> GeneratedImage:
        """Generate one image, falling back to the secondary tier once.

        Args:
            prompt: Prompt text.
            references: Resolved reference images.
            tier: Primary tier for this call, or ``None`` for the configured one.

        Raises:
            DispatchFailedError: If every tier in the chain failed.
        """
        primary, fallback = self._registry.chain(tier)

        try:
            return self.generate(prompt, references, primary)
        except (BackendCallError, NoImageReturnedError) as exc:
            primary_error: ProductshotError = exc

        if fallback is None:
            logger.error("Tier %s failed and no fallback is configured: %s", primary.value, primary_error)
            raise DispatchFailedError(primary_error) from primary_error

        logger.warning(
            "Tier %s failed (%s); falling back to %s", primary.value, primary_error, fallback.value
        )
        try:
            return self.generate(prompt, references, fallback)
        except (BackendCallError, NoImageReturnedError) as fallback_error:
            logger.error("Fallback tier %s failed: %s", fallback.value, fallback_error)
            raise DispatchFailedError(primary_error, fallback_error) from fallback_error
