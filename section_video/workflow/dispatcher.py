"""
Generation Dispatcher
=====================

Submits units to the generation provider.

Dispatch only waits for the provider to accept the job. Completion is
reported later through the webhook and applied by the WebhookReconciler.
"""

import asyncio
import math
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from ..api.base import BaseGenerationProvider
from ..core.exceptions import (
    DependencyNotReady,
    DispatchRejected,
    DispatchTimeout,
    EmptySetError,
    InvalidStateTransition,
    ProviderError,
    ProviderTimeout,
    ResourceNotFoundError,
    ValidationError,
)
from ..core.models import ModelProfile, ModelRegistry
from ..storage import UnitStore, VideoUnit, GenerationJob
from ..storage.models import DISPATCHABLE_STATUSES, SETTLED_STATUSES
from .continuity import ContinuityResolver

logger = logging.getLogger(__name__)


@dataclass
class DispatchReceipt:
    """Returned once the provider has accepted a unit."""

    unit_id: str
    job_id: str
    correlation_id: str
    status: str = "generating"
    seed: Optional[int] = None
    reference_image_url: Optional[str] = None
    estimated_cost: Optional[float] = None
    estimated_time: Optional[int] = None
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "job_id": self.job_id,
            "correlation_id": self.correlation_id,
            "status": self.status,
            "seed": self.seed,
            "reference_image_url": self.reference_image_url,
            "estimated_cost": self.estimated_cost,
            "estimated_time": self.estimated_time,
        }


class GenerationDispatcher:
    """
    Dispatches units to the generation provider.

    Handles:
    - Status and sequential-order gating
    - Continuity (seed, reference image)
    - Parameter whitelisting and validation
    - Job bookkeeping around the provider call
    """

    def __init__(
        self,
        store: UnitStore,
        registry: ModelRegistry,
        provider: BaseGenerationProvider,
        continuity: ContinuityResolver,
        webhook_url: Optional[str] = None,
        acceptance_timeout: float = 30.0,
        sequential: bool = True,
    ):
        self.store = store
        self.registry = registry
        self.provider = provider
        self.continuity = continuity
        self.webhook_url = webhook_url
        self.acceptance_timeout = acceptance_timeout
        self.sequential = sequential

        if not webhook_url:
            logger.warning("No webhook URL configured; dispatched units will never be reconciled")

    def _require_unit(self, unit_id: str) -> VideoUnit:
        unit = self.store.get_unit(unit_id)
        if unit is None:
            raise ResourceNotFoundError(f"Unit not found: {unit_id}", resource_type="unit", resource_id=unit_id)
        return unit

    def _check_dependency(self, unit: VideoUnit) -> None:
        if not self.sequential or unit.order <= 1:
            return
        previous = self.store.get_unit_by_order(unit.section_id, unit.order - 1)
        if previous is not None and previous.status.value not in SETTLED_STATUSES:
            raise DependencyNotReady(
                f"Unit {unit.order} waits for unit {previous.order} ({previous.status.value})",
                unit_id=unit.id,
                current_status=unit.status.value,
                target_status="dispatched",
                blocking_unit_id=previous.id,
            )

    def _unit_values(self, unit: VideoUnit, profile: ModelProfile, decision) -> Dict[str, Any]:
        values: Dict[str, Any] = {}

        if decision.seed is not None:
            values["seed"] = decision.seed

        if decision.reference_image_url and profile.supports_reference_images:
            values[profile.reference_param] = profile.reference_value(decision.reference_image_url)

        values["duration"] = math.ceil(unit.duration)

        if "num_frames" in profile.supported_params:
            fps = profile.defaults.get("frame_rate") or profile.defaults.get("frames_per_second") or 24
            values["num_frames"] = round(unit.duration * fps)

        return values

    def _prepare(self, unit_id: str, overrides: Optional[Dict[str, Any]]):
        """Gate, resolve continuity, build parameters, and claim the unit."""
        unit = self._require_unit(unit_id)

        if unit.status.value not in DISPATCHABLE_STATUSES:
            raise InvalidStateTransition(
                f"Unit {unit_id} cannot be dispatched from status {unit.status.value}",
                unit_id=unit_id,
                current_status=unit.status.value,
                target_status="dispatched",
            )

        self._check_dependency(unit)

        profile = self.registry.require(unit.model_id)
        decision = self.continuity.resolve(unit, profile)

        values = self._unit_values(unit, profile, decision)
        values.update(overrides or {})

        if not unit.prompt or not unit.prompt.strip():
            raise ValidationError(f"Unit {unit_id} has no prompt", field="prompt")

        parameters = self.registry.build_parameters(profile, values, unit.prompt)

        if not self.store.claim_for_dispatch(unit_id):
            current = self._require_unit(unit_id)
            raise InvalidStateTransition(
                f"Unit {unit_id} was claimed by another dispatch",
                unit_id=unit_id,
                current_status=current.status.value,
                target_status="dispatched",
            )

        job = self.store.create_job(GenerationJob(model_id=profile.model_id, parameters=parameters, unit_id=unit_id))
        return unit, profile, decision, parameters, job

    async def dispatch(self, unit_id: str, overrides: Optional[Dict[str, Any]] = None) -> DispatchReceipt:
        """
        Dispatch one unit.

        Store access runs in a worker thread so a busy database never blocks
        the event loop.

        Args:
            unit_id: Unit to dispatch
            overrides: Extra provider parameters; anything outside the
                model's whitelist is dropped

        Returns:
            DispatchReceipt with the provider correlation id

        Raises:
            InvalidStateTransition: If the unit is not pending or failed
            DependencyNotReady: If the preceding unit is still in progress
            ValidationError: If the parameters do not validate
            DispatchRejected: If the provider refuses the job or fails unexpectedly
            DispatchTimeout: If the provider does not accept the job in time
        """
        unit, profile, decision, parameters, job = await asyncio.to_thread(self._prepare, unit_id, overrides)

        logger.info(f"Dispatching unit {unit.order} of section {unit.section_id} (job {job.id}, model {profile.model_id})")

        try:
            result = await asyncio.wait_for(
                self.provider.submit(profile, parameters, self.webhook_url),
                timeout=self.acceptance_timeout,
            )
        except (asyncio.TimeoutError, ProviderTimeout):
            message = f"Provider did not accept the job within {self.acceptance_timeout}s"
            await asyncio.to_thread(self.store.mark_dispatch_failed, job.id, unit_id, message)
            logger.error(f"Dispatch of unit {unit_id} timed out")
            raise DispatchTimeout(message, unit_id=unit_id, job_id=job.id, timeout_seconds=self.acceptance_timeout)
        except ProviderError as e:
            await asyncio.to_thread(self.store.mark_dispatch_failed, job.id, unit_id, e.message)
            logger.error(f"Provider rejected unit {unit_id}: {e.message}")
            raise DispatchRejected(
                f"Provider rejected unit {unit_id}: {e.message}",
                unit_id=unit_id,
                job_id=job.id,
                recoverable=e.recoverable,
            ) from e
        except Exception as e:
            message = f"Unexpected provider error: {type(e).__name__}: {e}"
            await asyncio.to_thread(self.store.mark_dispatch_failed, job.id, unit_id, message)
            logger.exception(f"Dispatch of unit {unit_id} failed unexpectedly")
            raise DispatchRejected(
                f"Dispatch of unit {unit_id} failed: {message}",
                unit_id=unit_id,
                job_id=job.id,
                recoverable=True,
            ) from e

        await asyncio.to_thread(
            self.store.mark_dispatch_accepted, job.id, unit_id, result.correlation_id, result.estimated_cost
        )

        logger.info(f"Unit {unit_id} accepted as prediction {result.correlation_id}")

        return DispatchReceipt(
            unit_id=unit_id,
            job_id=job.id,
            correlation_id=result.correlation_id,
            seed=parameters.get("seed", decision.seed),
            reference_image_url=decision.reference_image_url,
            estimated_cost=result.estimated_cost,
            estimated_time=result.estimated_time,
            parameters=parameters,
        )

    async def dispatch_next(self, section_id: str, overrides: Optional[Dict[str, Any]] = None) -> DispatchReceipt:
        """
        Dispatch the lowest-order pending or failed unit of a section.

        Raises:
            ResourceNotFoundError: If the section does not exist
            EmptySetError: If no unit is waiting for dispatch
        """
        section = await asyncio.to_thread(self.store.get_section, section_id)
        if section is None:
            raise ResourceNotFoundError(
                f"Section not found: {section_id}",
                resource_type="section",
                resource_id=section_id,
            )

        for unit in await asyncio.to_thread(self.store.list_units, section_id):
            if unit.status.value in DISPATCHABLE_STATUSES:
                return await self.dispatch(unit.id, overrides)

        raise EmptySetError(f"No unit of section {section_id} is waiting for dispatch", section_id=section_id)
