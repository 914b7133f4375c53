"""
Approval Gate
=============

Operator review of generated units: approve a completed clip, or send a
unit back to pending for another generation attempt.
"""

import logging
from typing import Optional

from ..core.exceptions import InvalidStateTransition, ResourceNotFoundError
from ..storage import UnitStore, VideoUnit, UnitStatus

logger = logging.getLogger(__name__)


class ApprovalGate:
    """Approves and regenerates units."""

    def __init__(self, store: UnitStore):
        self.store = store

    def _require_unit(self, unit_id: str) -> VideoUnit:
        unit = self.store.get_unit(unit_id)
        if unit is None:
            raise ResourceNotFoundError(f"Unit not found: {unit_id}", resource_type="unit", resource_id=unit_id)
        return unit

    def approve(self, unit_id: str) -> VideoUnit:
        """
        Mark a completed unit as approved.

        Approving an already approved unit succeeds without changes.

        Raises:
            InvalidStateTransition: If the unit is in any other status
        """
        unit = self._require_unit(unit_id)

        if unit.status is UnitStatus.APPROVED:
            return unit

        if unit.status is UnitStatus.COMPLETED and self.store.transition_unit(
            unit_id, (UnitStatus.COMPLETED.value,), UnitStatus.APPROVED
        ):
            logger.info(f"Approved unit {unit.order} of section {unit.section_id}")
            return self._require_unit(unit_id)

        current = self._require_unit(unit_id)
        if current.status is UnitStatus.APPROVED:
            return current

        raise InvalidStateTransition(
            f"Only completed units can be approved (unit {unit_id} is {current.status.value})",
            unit_id=unit_id,
            current_status=current.status.value,
            target_status=UnitStatus.APPROVED.value,
        )

    def regenerate(
        self,
        unit_id: str,
        new_seed: Optional[int] = None,
        reference_image_url: Optional[str] = None,
    ) -> VideoUnit:
        """
        Reset a unit to pending so it can be dispatched again.

        Clears the previous result and error. Units downstream that chained
        from this unit's thumbnail are not reset.

        Args:
            unit_id: Unit to reset
            new_seed: Replacement seed (keeps the current seed if omitted)
            reference_image_url: Replacement reference image
        """
        unit = self._require_unit(unit_id)
        self.store.reset_unit(unit_id, seed=new_seed, reference_image_url=reference_image_url)

        if unit.thumbnail_url:
            dependents = [
                u for u in self.store.find_units_with_reference(unit.section_id, unit.thumbnail_url)
                if u.id != unit_id
            ]
            if dependents:
                logger.warning(
                    f"Units {[u.order for u in dependents]} of section {unit.section_id} "
                    f"still reference the previous thumbnail of unit {unit.order}"
                )

        logger.info(f"Unit {unit.order} of section {unit.section_id} reset to pending (was {unit.status.value})")
        return self._require_unit(unit_id)
