"""Turn reference inputs into raw image bytes.

A reference is either an inline payload (``data:image/png;base64,...``) or a
remote locator (any other string, normally an ``http(s)`` URL).

Inline payloads are decoded locally. Remote locators are fetched with
``httpx`` using a bounded timeout. No retries are attempted here; a failed
reference aborts the generation call with a typed error naming the
offending reference.

Usage Example
-------------
    >>> resolver = ReferenceResolver(timeout=10.0)
    >>> ref = resolver.resolve("https://example.com/kettle.jpg")
    >>> ref.mime_type
    'image/jpeg'
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import ReferenceDecodeError, ReferenceFetchError
from .models import ResolvedReference

logger = logging.getLogger(__name__)

INLINE_PREFIX = re.compile(r"^data:(image/[\w.+-]+);base64,", re.IGNORECASE)
DEFAULT_MIME_TYPE = "image/jpeg"

# Non-standard spellings seen in data URLs and Content-Type headers.
_MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-png": "image/png",
}


def is_inline(reference: str) -> bool:
    """Return True if ``reference`` starts with a recognized inline-image prefix."""
    return INLINE_PREFIX.match(reference) is not None


def describe(reference: str, limit: int = 48) -> str:
    """Shorten a reference for log lines and error messages."""
    if len(reference) <= limit:
        return reference
    return reference[:limit] + "..."


def _normalize_mime(mime_type: str) -> str:
    mime_type = mime_type.split(";", 1)[0].strip().lower()
    return _MIME_ALIASES.get(mime_type, mime_type)


def sniff_mime_type(data: bytes) -> str | None:
    """Guess a MIME type from image bytes using Pillow's format detection."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return None
    return Image.MIME.get(fmt) if fmt else None


class ReferenceResolver:
    """Resolve inline and remote references into :class:`ResolvedReference` values.

    Args:
        timeout: Timeout in seconds for each remote fetch.
        client: Optional pre-built ``httpx.Client``. When omitted the resolver
            creates and owns one.
        max_workers: Upper bound on concurrent fetches in :meth:`resolve_many`.
    """

    def __init__(
        self,
        timeout: float = 20.0,
        client: httpx.Client | None = None,
        max_workers: int = 6,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._timeout = timeout
        self._max_workers = max(1, max_workers)

    def resolve(self, reference: str) -> ResolvedReference:
        """Resolve a single reference.

        Raises:
            ReferenceDecodeError: If an inline payload is not valid base64.
            ReferenceFetchError: If a remote locator cannot be downloaded.
        """
        if is_inline(reference):
            return self._decode_inline(reference)
        return self._fetch_remote(reference)

    def resolve_many(self, references: Sequence[str], limit: int) -> list[ResolvedReference]:
        """Resolve at most the first ``limit`` references, preserving order.

        References past ``limit`` are dropped without being fetched. Fetches
        run concurrently; the first failure is raised once all started
        fetches have finished.
        """
        selected = list(references[: max(0, limit)])
        dropped = len(references) - len(selected)
        if dropped > 0:
            logger.info("Dropping %d reference(s) beyond the cap of %d", dropped, limit)

        if not selected:
            return []
        if len(selected) == 1:
            return [self.resolve(selected[0])]

        workers = min(self._max_workers, len(selected))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reference") as pool:
            futures = [pool.submit(self.resolve, ref) for ref in selected]
            return [future.result() for future in futures]

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ReferenceResolver:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- Internals ----------------------------------------------------------

    def _decode_inline(self, reference: str) -> ResolvedReference:
        match = INLINE_PREFIX.match(reference)
        payload = re.sub(r"\s+", "", reference[match.end():])
        if not payload:
            raise ReferenceDecodeError(describe(reference), "empty payload")
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ReferenceDecodeError(describe(reference), str(exc)) from exc

        mime_type = _normalize_mime(match.group(1))
        logger.debug("Decoded inline reference (%s, %d bytes)", mime_type, len(data))
        return ResolvedReference(data=data, mime_type=mime_type, locator=describe(reference))

    def _fetch_remote(self, locator: str) -> ResolvedReference:
        try:
            response = self._client.get(locator, timeout=self._timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Reference fetch failed for %s: %s", describe(locator), exc)
            raise ReferenceFetchError(locator, f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "Reference fetch for %s returned HTTP %d", describe(locator), response.status_code
            )
            raise ReferenceFetchError(locator, f"HTTP {response.status_code}")

        data = response.content
        if not data:
            raise ReferenceFetchError(locator, "empty response body")

        mime_type = self._guess_remote_mime(response.headers.get("content-type", ""), data)
        logger.debug("Fetched %s (%s, %d bytes)", describe(locator), mime_type, len(data))
        return ResolvedReference(data=data, mime_type=mime_type, locator=locator)

    @staticmethod
    def _guess_remote_mime(content_type: str, data: bytes) -> str:
        declared = _normalize_mime(content_type) if content_type else ""
        if declared.startswith("image/"):
            return declared
        return sniff_mime_type(data) or DEFAULT_MIME_TYPE
