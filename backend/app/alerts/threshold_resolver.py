"""
threshold_resolver.py — Deterministic 4-tier threshold lookup.

═══════════════════════════════════════════════════════════════════════════
FALLBACK ORDER (first non-empty tier wins, active configs only)
═══════════════════════════════════════════════════════════════════════════

    1. exact       (block, plant, area)
    2. area_spec   (block, plant, <area specification>)     if provided
    3. wildcard    (block, plant, ANY)
    4. strictest   every config under (block, plant); smallest
                   near_limit + far_limit, ties → first in identity order

Returns None when nothing matches; callers log it and keep the reading.
"""

from __future__ import annotations

import logging
from typing import Optional

from backend.app.alerts.models import (
    WILDCARD_AREA,
    ResolutionTier,
    ThresholdResolution,
)
from backend.app.storage.base import ThresholdStore

logger = logging.getLogger(__name__)


class ThresholdResolver:
    """Read-only view over a ThresholdStore."""

    def __init__(self, store: ThresholdStore) -> None:
        self.store = store

    async def resolve(
        self,
        block: str,
        plant: str,
        area: str,
        area_spec: Optional[str] = None,
    ) -> Optional[ThresholdResolution]:
        tiers = [(ResolutionTier.EXACT, area)]
        spec = (area_spec or "").strip()
        if spec:
            tiers.append((ResolutionTier.AREA_SPEC, spec))
        tiers.append((ResolutionTier.WILDCARD, WILDCARD_AREA))

        for tier, key in tiers:
            matches = await self.store.find_active(block, plant, key)
            if matches:
                logger.debug(
                    "Threshold resolved via %s for %s/%s/%s",
                    tier.value, block, plant, key,
                    extra={"block": block, "plant": plant, "area": area, "tier": tier.value},
                )
                return ThresholdResolution(config=matches[0], tier=tier)

        candidates = await self.store.list_active_for_plant(block, plant)
        if candidates:
            # min() keeps the first of equal keys, and the store orders by identity
            strictest = min(candidates, key=lambda c: c.limit_sum)
            logger.info(
                "No exact/wildcard threshold for %s/%s/%s; using strictest %s (sum=%g)",
                block, plant, area, strictest.area, strictest.limit_sum,
                extra={"block": block, "plant": plant, "area": area,
                       "tier": ResolutionTier.STRICTEST.value},
            )
            return ThresholdResolution(config=strictest, tier=ResolutionTier.STRICTEST)

        logger.warning(
            "No active threshold for %s/%s/%s (area_spec=%s)",
            block, plant, area, spec or None,
            extra={"block": block, "plant": plant, "area": area},
        )
        if logger.isEnabledFor(logging.DEBUG):
            available = await self.store.list_all()
            logger.debug(
                "Configured thresholds: %s",
                [f"{c.block}/{c.plant}/{c.area}{'' if c.is_active else ' (inactive)'}"
                 for c in available],
            )
        return None
