"""
Webhook Reconciler
==================

Applies provider webhook deliveries to jobs and units.

Deliveries are at-least-once and may arrive out of order. Every write is a
conditional update against in-flight statuses, so replays, duplicates, and
late non-terminal events never move a settled job or unit.

Successful outputs are copied through the configured output storage before
they are recorded, since provider URLs expire.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional, List, Dict, Any, Mapping, Union

import pydantic
from pydantic import BaseModel, ConfigDict

from ..api.outputs import BaseOutputStorage, ProviderOutputStorage
from ..core.exceptions import ProviderError, UnknownCorrelationId, WebhookAuthError
from ..core.models import ModelRegistry
from ..core.security import DEFAULT_TOLERANCE_SECONDS, verify_webhook_signature
from ..storage import UnitStore, TerminalUpdate, GenerationJob
from ..storage.models import IN_FLIGHT_STATUSES, JobStatus, UnitStatus

logger = logging.getLogger(__name__)


# Provider status -> (job status, unit status)
TERMINAL_STATUS_MAP = {
    "succeeded": (JobStatus.COMPLETED, UnitStatus.COMPLETED),
    "failed": (JobStatus.FAILED, UnitStatus.FAILED),
    "canceled": (JobStatus.CANCELED, UnitStatus.CANCELED),
}

# Appended to a single video output URL to request its last frame
LAST_FRAME_SUFFIX = "?frame=last"


class WebhookEvent(BaseModel):
    """Prediction payload delivered by the provider."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    output: Optional[Any] = None
    error: Optional[Any] = None
    metrics: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUS_MAP

    def output_urls(self) -> List[str]:
        """Output URLs in provider order (a single string counts as one)."""
        if isinstance(self.output, str):
            return [self.output]
        if isinstance(self.output, list):
            return [item for item in self.output if isinstance(item, str) and item]
        return []

    def metric(self, name: str) -> Optional[float]:
        value = (self.metrics or {}).get(name)
        return float(value) if isinstance(value, (int, float)) else None


@dataclass
class WebhookOutcome:
    """HTTP status and JSON body to answer a delivery with."""

    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


class WebhookReconciler:
    """
    Authenticates webhook deliveries and applies terminal outcomes.

    Only authentication failures answer with a non-200 status. Everything
    else the provider could not fix by retrying (unknown ids, non-terminal
    events, malformed payloads, duplicates) answers 200 so it is not
    redelivered. Storage errors propagate to the caller.
    """

    def __init__(
        self,
        store: UnitStore,
        registry: ModelRegistry,
        secret: Optional[str],
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        output_storage: Optional[BaseOutputStorage] = None,
    ):
        self.store = store
        self.registry = registry
        self.secret = secret
        self.tolerance_seconds = tolerance_seconds
        self.output_storage = output_storage or ProviderOutputStorage()

        if not secret:
            logger.warning("No webhook secret configured; every delivery will be rejected")

    def handle(
        self,
        headers: Mapping[str, str],
        body: Union[str, bytes],
        now: Optional[float] = None,
    ) -> WebhookOutcome:
        """
        Handle one webhook delivery.

        Args:
            headers: Request headers carrying the signature
            body: Raw request body exactly as received
            now: Current unix time, for signature tolerance checks

        Returns:
            WebhookOutcome to send back to the provider
        """
        try:
            webhook_id = verify_webhook_signature(
                headers, body, self.secret, tolerance_seconds=self.tolerance_seconds, now=now
            )
        except WebhookAuthError as e:
            logger.error(f"Rejected webhook delivery: {e.message} (webhook-id={e.details.get('webhook_id')})")
            return WebhookOutcome(401, {"success": False, "error": e.code, "message": e.message})

        try:
            event = WebhookEvent.model_validate_json(body)
        except pydantic.ValidationError as e:
            logger.warning(f"Malformed webhook payload {webhook_id}: {e.error_count()} error(s)")
            return WebhookOutcome(200, {"success": False, "message": "Malformed payload"})

        if not event.is_terminal:
            logger.debug(f"Ignoring non-terminal status '{event.status}' for prediction {event.id}")
            return WebhookOutcome(200, {"success": True, "message": "Non-terminal status ignored", "status": event.status})

        job = self.store.get_job_by_correlation_id(event.id)
        if job is None:
            error = UnknownCorrelationId(event.id)
            logger.warning(error.message)
            return WebhookOutcome(200, {"success": False, "error": error.code, "message": error.message})

        update = self._build_update(job, event)
        if update.unit_status is UnitStatus.COMPLETED and job.status.value in IN_FLIGHT_STATUSES:
            update = self._persist_outputs(job, update, event)

        applied = self.store.apply_terminal_update(job, update)

        if not applied.job_updated:
            logger.info(f"Duplicate terminal webhook for job {job.id} ignored")
            return WebhookOutcome(200, {"success": True, "message": "Already processed", "job_id": job.id})

        if not job.unit_id:
            logger.warning(f"Job {job.id} has no linked unit")
            return WebhookOutcome(200, {"success": False, "message": "No linked unit", "job_id": job.id})

        if not applied.unit_updated:
            logger.warning(f"Unit {job.unit_id} no longer tracks job {job.id}; outcome recorded on the job only")
            return WebhookOutcome(
                200, {"success": True, "message": "Stale job", "job_id": job.id, "unit_id": job.unit_id}
            )

        logger.info(f"Unit {job.unit_id} -> {update.unit_status.value} (prediction {event.id})")
        return WebhookOutcome(
            200,
            {
                "success": True,
                "job_id": job.id,
                "unit_id": job.unit_id,
                "status": update.unit_status.value,
            },
        )

    def _build_update(self, job: GenerationJob, event: WebhookEvent) -> TerminalUpdate:
        job_status, unit_status = TERMINAL_STATUS_MAP[event.status]
        urls = event.output_urls()
        error = str(event.error) if event.error else None

        if unit_status is UnitStatus.COMPLETED and not urls:
            job_status, unit_status = JobStatus.FAILED, UnitStatus.FAILED
            error = "Prediction succeeded without an output URL"
            logger.warning(f"Prediction {event.id} succeeded without output")

        if unit_status is UnitStatus.FAILED and not error:
            error = f"Prediction {event.status}"

        predict_time = event.metric("predict_time")
        billable = event.metric("total_time") or predict_time

        actual_cost = None
        profile = self.registry.get(job.model_id)
        if profile is not None and billable is not None:
            actual_cost = round(billable * profile.cost_per_second, 4)

        result_url = thumbnail_url = None
        if unit_status is UnitStatus.COMPLETED:
            result_url = urls[0]
            # Single-output models get the provider's last-frame rendition
            thumbnail_url = urls[1] if len(urls) > 1 else f"{result_url}{LAST_FRAME_SUFFIX}"

        return TerminalUpdate(
            job_status=job_status,
            unit_status=unit_status,
            result_url=result_url,
            thumbnail_url=thumbnail_url,
            error=error,
            output=event.output,
            metrics=event.metrics,
            processing_time_ms=round(predict_time * 1000) if predict_time is not None else None,
            actual_cost=actual_cost,
        )

    def _persist_outputs(self, job: GenerationJob, update: TerminalUpdate, event: WebhookEvent) -> TerminalUpdate:
        """Replace provider URLs with durable copies where the copy succeeds."""
        prefix = f"{job.unit_id or 'unlinked'}/{job.id}"

        try:
            result_url = self.output_storage.persist(update.result_url, f"{prefix}/result")
        except ProviderError as e:
            logger.error(f"Could not store output of job {job.id}, keeping provider URL: {e.message}")
            return update

        thumbnail_url = update.thumbnail_url
        urls = event.output_urls()
        if len(urls) > 1:
            try:
                thumbnail_url = self.output_storage.persist(urls[1], f"{prefix}/thumbnail")
            except ProviderError as e:
                logger.warning(f"Could not store thumbnail of job {job.id}, keeping provider URL: {e.message}")

        return replace(update, result_url=result_url, thumbnail_url=thumbnail_url)
