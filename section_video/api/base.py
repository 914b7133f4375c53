"""
Base Providers
==============

Abstract base classes for generation and concatenation providers.
"""

import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
import httpx

from ..core.models import ModelProfile

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    """What a provider returns when it accepts a generation job."""

    job_id: str
    correlation_id: str
    estimated_cost: Optional[float] = None
    estimated_time: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "correlation_id": self.correlation_id,
            "estimated_cost": self.estimated_cost,
            "estimated_time": self.estimated_time,
        }


@dataclass
class CompileRequest:
    """Ordered clip URLs plus output options for concatenation."""

    ordered_urls: List[str]
    output_format: str = "mp4"
    quality: str = "high"
    section_id: Optional[str] = None


@dataclass
class CompileResult:
    compiled_url: str
    file_size: Optional[int] = None
    duration: Optional[float] = None


class _HttpProvider(ABC):
    """Shared HTTP client handling for providers."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the provider.

        Args:
            api_key: API key (or read from environment)
            base_url: Base URL for the API
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used to stub the network)
        """
        self.api_key = api_key or self._get_api_key_from_env()
        self.base_url = (base_url or self._get_default_base_url()).rstrip("/")
        self.timeout = timeout
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

        self._validate_config()

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @property
    def env_key_name(self) -> Optional[str]:
        """Return the environment variable name for the API key."""
        return None

    @abstractmethod
    def _get_default_base_url(self) -> str:
        """Return the default base URL for this provider."""
        pass

    def _get_api_key_from_env(self) -> Optional[str]:
        return os.getenv(self.env_key_name) if self.env_key_name else None

    def _validate_config(self) -> None:
        if self.env_key_name and not self.api_key:
            logger.warning(
                f"No API key found for {self.provider_name}. "
                f"Set {self.env_key_name} environment variable or pass api_key parameter."
            )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class BaseGenerationProvider(_HttpProvider):
    """
    Abstract base class for asynchronous video generation providers.

    A provider only accepts jobs; completion arrives later through the
    webhook registered at submission time.
    """

    @abstractmethod
    async def submit(
        self,
        profile: ModelProfile,
        parameters: Dict[str, Any],
        webhook_url: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Submit one generation job.

        Args:
            profile: Model profile for the job
            parameters: Validated provider payload
            webhook_url: Where the provider should deliver status events

        Returns:
            SubmissionResult carrying the provider correlation id

        Raises:
            ProviderError: If the provider rejects the job or cannot be reached
        """
        pass

    @staticmethod
    def estimate_cost(profile: ModelProfile, parameters: Dict[str, Any]) -> Optional[float]:
        duration = parameters.get("duration")
        if duration is None and parameters.get("num_frames"):
            fps = parameters.get("frame_rate") or parameters.get("frames_per_second") or 24
            duration = parameters["num_frames"] / fps
        if duration is None:
            return None
        return round(float(duration) * profile.cost_per_second, 4)


class BaseConcatenationProvider(ABC):
    """Abstract base class for providers that join clips into one video."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def compile(self, request: CompileRequest) -> CompileResult:
        """
        Concatenate the clips in ``request.ordered_urls`` in order.

        Raises:
            ProviderError: If the concatenation fails
        """
        pass

    async def close(self) -> None:
        return None
