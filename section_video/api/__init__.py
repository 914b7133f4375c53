"""
API Integration Layer
=====================

Clients for the external services the pipeline depends on.

Providers:
- Replicate (asynchronous video generation with webhooks)
- Compile service (remote clip concatenation)
- ffmpeg (local clip concatenation)
- Output storage (durable copies of generated clips)

Usage:
    from section_video.api import get_provider

    provider = get_provider("replicate")
    result = await provider.submit(profile, parameters, webhook_url)
"""

from .base import (
    BaseGenerationProvider,
    BaseConcatenationProvider,
    SubmissionResult,
    CompileRequest,
    CompileResult,
)
from .factory import get_provider, get_concatenation_provider, get_output_storage, list_providers

__all__ = [
    "BaseGenerationProvider",
    "BaseConcatenationProvider",
    "SubmissionResult",
    "CompileRequest",
    "CompileResult",
    "get_provider",
    "get_concatenation_provider",
    "get_output_storage",
    "list_providers",
]
