"""
Core Module
===========

Configuration, model registry, exceptions, and security helpers.
"""

from .config import Config, GenerationConfig, WebhookConfig, CompilationConfig
from .models import ModelRegistry, ModelProfile, PARAMETER_SCHEMAS
from .exceptions import (
    SectionVideoError,
    ConfigurationError,
    ValidationError,
    ProviderError,
    SecurityError,
    WebhookAuthError,
)
from .security import verify_webhook_signature, sign_webhook, sanitize_filename

__all__ = [
    # Configuration
    "Config",
    "GenerationConfig",
    "WebhookConfig",
    "CompilationConfig",
    # Models
    "ModelRegistry",
    "ModelProfile",
    "PARAMETER_SCHEMAS",
    # Exceptions
    "SectionVideoError",
    "ConfigurationError",
    "ValidationError",
    "ProviderError",
    "SecurityError",
    "WebhookAuthError",
    # Security
    "verify_webhook_signature",
    "sign_webhook",
    "sanitize_filename",
]
