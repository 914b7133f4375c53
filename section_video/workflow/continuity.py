"""
Continuity Resolver
===================

Decides which seed and reference image a unit is generated with, so that
consecutive clips of a section look like one continuous video.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.models import ModelProfile
from ..storage import UnitStore, VideoUnit
from ..storage.models import CHAINABLE_STATUSES

logger = logging.getLogger(__name__)


@dataclass
class ContinuityDecision:
    """Seed and reference image chosen for one unit."""

    seed: Optional[int]
    reference_image_url: Optional[str] = None
    source: str = "none"  # "explicit", "previous_unit" or "none"
    source_unit_id: Optional[str] = None


class ContinuityResolver:
    """
    Resolves seed and reference image for a unit before dispatch.

    Priority:
    1. Explicit reference image already set on the unit
    2. Thumbnail of the preceding unit, when the model accepts reference
       images and that unit finished successfully
    3. Nothing (seed only)
    """

    def __init__(self, store: UnitStore, enabled: bool = True):
        self.store = store
        self.enabled = enabled

    def resolve(self, unit: VideoUnit, profile: ModelProfile) -> ContinuityDecision:
        """
        Resolve continuity for ``unit``.

        A reference taken from the preceding unit is written to the unit
        before this returns, so the stored unit always shows what was sent.
        """
        if unit.reference_image_url:
            return ContinuityDecision(
                seed=unit.seed,
                reference_image_url=unit.reference_image_url,
                source="explicit",
            )

        if not self.enabled or not profile.supports_reference_images or unit.order <= 1:
            return ContinuityDecision(seed=unit.seed)

        previous = self.store.get_unit_by_order(unit.section_id, unit.order - 1)
        if previous is None or previous.status.value not in CHAINABLE_STATUSES:
            return ContinuityDecision(seed=unit.seed)

        if not previous.thumbnail_url:
            logger.debug(f"Unit {previous.order} of section {unit.section_id} has no thumbnail to chain from")
            return ContinuityDecision(seed=unit.seed)

        self.store.set_reference_image(unit.id, previous.thumbnail_url)
        unit.reference_image_url = previous.thumbnail_url

        logger.info(f"Chaining unit {unit.order} from thumbnail of unit {previous.order}")

        return ContinuityDecision(
            seed=unit.seed,
            reference_image_url=previous.thumbnail_url,
            source="previous_unit",
            source_unit_id=previous.id,
        )
