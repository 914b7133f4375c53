"""
Replicate Provider
==================

Submits predictions to the Replicate API and registers a webhook for
completion. Generation runs on Replicate's infrastructure; this client never
polls or waits for it.
"""

import logging
from typing import Optional, Dict, Any, List

import httpx

from ..core.exceptions import ProviderError, ProviderTimeout
from ..core.models import ModelProfile
from ..core.security import redact_api_key
from .base import BaseGenerationProvider, SubmissionResult
from .factory import register_provider

logger = logging.getLogger(__name__)


@register_provider("replicate")
class ReplicateProvider(BaseGenerationProvider):
    """
    Replicate provider for hosted video models.

    Models are addressed either by pinned version hash or, when a profile has
    no version, through the model's official predictions endpoint.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        webhook_events: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(api_key=api_key, base_url=base_url, timeout=timeout, **kwargs)
        self.webhook_events = webhook_events or ["start", "completed"]

    @property
    def provider_name(self) -> str:
        return "Replicate"

    @property
    def env_key_name(self) -> str:
        return "REPLICATE_API_TOKEN"

    def _get_default_base_url(self) -> str:
        return "https://api.replicate.com/v1"

    def _endpoint(self, profile: ModelProfile) -> str:
        if profile.version:
            return f"{self.base_url}/predictions"
        return f"{self.base_url}/models/{profile.replicate_model}/predictions"

    def _build_body(
        self,
        profile: ModelProfile,
        parameters: Dict[str, Any],
        webhook_url: Optional[str],
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"input": parameters}
        if profile.version:
            body["version"] = profile.version
        if webhook_url:
            body["webhook"] = webhook_url
            body["webhook_events_filter"] = list(self.webhook_events)
        return body

    async def submit(
        self,
        profile: ModelProfile,
        parameters: Dict[str, Any],
        webhook_url: Optional[str] = None,
    ) -> SubmissionResult:
        """Create a prediction and return its id as the correlation id."""
        client = await self._get_client()
        endpoint = self._endpoint(profile)

        logger.info(f"Submitting {profile.model_id} prediction to Replicate")
        logger.debug(f"Endpoint: {endpoint}")

        try:
            response = await client.post(endpoint, json=self._build_body(profile, parameters, webhook_url))
        except httpx.TimeoutException:
            raise ProviderTimeout(
                f"Replicate did not accept the prediction within {self.timeout}s",
                provider=self.provider_name,
                timeout_seconds=self.timeout,
            )
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Replicate request failed: {redact_api_key(str(e))}",
                provider=self.provider_name,
                recoverable=True,
            )

        if response.status_code not in (200, 201, 202):
            detail = redact_api_key(response.text)
            raise ProviderError(
                f"Replicate rejected prediction: {response.status_code} {self._error_detail(response)}",
                provider=self.provider_name,
                status_code=response.status_code,
                response_body=detail,
            )

        try:
            data = response.json()
        except ValueError:
            raise ProviderError(
                "Replicate returned a non-JSON response",
                provider=self.provider_name,
                status_code=response.status_code,
                response_body=redact_api_key(response.text[:500]),
                recoverable=True,
            )

        prediction_id = data.get("id") if isinstance(data, dict) else None
        if not prediction_id:
            raise ProviderError(
                "Replicate response did not include a prediction id",
                provider=self.provider_name,
                status_code=response.status_code,
                response_body=redact_api_key(response.text),
            )

        return SubmissionResult(
            job_id=prediction_id,
            correlation_id=prediction_id,
            estimated_cost=self.estimate_cost(profile, parameters),
            estimated_time=profile.generation_time_seconds,
            raw=data,
        )

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(data, dict):
            return str(data.get("detail") or data.get("title") or data)[:200]
        return str(data)[:200]
