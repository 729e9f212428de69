"""Backend tier enumeration and the read-only tier registry.

A *tier* is a named quality/cost level of the generative backend. Callers
only ever see the symbolic :class:`Tier` value; the registry maps it to the
concrete Gemini model identifier, the API version selector, and the maximum
number of reference images that tier accepts.

The registry is built once at process start (see
:meth:`TierRegistry.from_config`) and handed to the dispatcher and the
orchestrator. It is never mutated afterwards, so it is safe to share across
threads.
"""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterator, Mapping

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .config import ProductshotConfig

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    """Symbolic backend tier shared by configuration, requests and dispatch."""

    STANDARD = "standard"
    PRO = "pro"


class BackendTierConfig(BaseModel):
    """Concrete backend settings for one tier."""

    model_config = ConfigDict(frozen=True)

    tier: Tier
    model_id: str = Field(..., min_length=1)
    api_version: str = Field(..., min_length=1)
    max_references: int = Field(..., ge=1, le=6)


class TierRegistry:
    """Read-only mapping of :class:`Tier` to :class:`BackendTierConfig`.

    Also records the fallback chain: which tier is attempted first and which
    (if any) is attempted when it fails.

    Args:
        tiers: The configured tiers. Every tier named by ``primary`` and
            ``fallback`` must be present.
        primary: Tier attempted first.
        fallback: Tier attempted once after a primary failure. ``None`` or a
            value equal to ``primary`` disables the fallback hop.

    Raises:
        KeyError: If ``primary`` or ``fallback`` has no configuration.
    """

    def __init__(
        self,
        tiers: Mapping[Tier, BackendTierConfig],
        primary: Tier,
        fallback: Tier | None = None,
    ) -> None:
        self._tiers = MappingProxyType(dict(tiers))

        for name in (primary, fallback):
            if name is not None and name not in self._tiers:
                available = ", ".join(t.value for t in self._tiers)
                raise KeyError(f"Tier '{name.value}' is not configured. Available tiers: {available}")

        self._primary = primary
        self._fallback = fallback if fallback != primary else None

    @classmethod
    def from_config(cls, config: ProductshotConfig) -> TierRegistry:
        """Build the registry from the process configuration."""
        tiers = {
            Tier.STANDARD: BackendTierConfig(
                tier=Tier.STANDARD,
                model_id=config.standard_model_id,
                api_version=config.standard_api_version,
                max_references=config.standard_max_references,
            ),
            Tier.PRO: BackendTierConfig(
                tier=Tier.PRO,
                model_id=config.pro_model_id,
                api_version=config.pro_api_version,
                max_references=config.pro_max_references,
            ),
        }
        registry = cls(tiers, primary=config.primary_tier, fallback=config.fallback_tier)
        logger.info(
            "Tier registry ready: primary=%s fallback=%s",
            registry.primary.value,
            registry.fallback.value if registry.fallback else "none",
        )
        return registry

    def get(self, tier: Tier) -> BackendTierConfig:
        """Return the configuration for ``tier``.

        Raises:
            KeyError: If the tier is not configured.
        """
        try:
            return self._tiers[tier]
        except KeyError:
            raise KeyError(f"Tier '{tier.value}' is not configured") from None

    def chain(self, requested: Tier | None = None) -> tuple[Tier, Tier | None]:
        """Return the ``(primary, fallback)`` pair for a request.

        When the caller asks for a specific tier it becomes the primary; the
        configured fallback still applies unless it is the same tier.
        """
        primary = requested or self._primary
        fallback = self._fallback if self._fallback != primary else None
        return primary, fallback

    def reference_cap(self, tier: Tier) -> int:
        return self.get(tier).max_references

    @property
    def primary(self) -> Tier:
        return self._primary

    @property
    def fallback(self) -> Tier | None:
        return self._fallback

    def __iter__(self) -> Iterator[Tier]:
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)
