"""
Provider Factory
================

Factory for creating provider and output storage instances.
"""

import logging
from typing import List, Dict, Type

from .base import BaseGenerationProvider, BaseConcatenationProvider

logger = logging.getLogger(__name__)

# Registries of available providers
_PROVIDERS: Dict[str, Type[BaseGenerationProvider]] = {}
_CONCATENATORS: Dict[str, Type[BaseConcatenationProvider]] = {}
_OUTPUT_STORAGES: Dict[str, type] = {}


def register_provider(name: str):
    """Decorator to register a generation provider class."""
    def decorator(cls: Type[BaseGenerationProvider]):
        _PROVIDERS[name.lower()] = cls
        return cls
    return decorator


def register_concatenator(name: str):
    """Decorator to register a concatenation provider class."""
    def decorator(cls: Type[BaseConcatenationProvider]):
        _CONCATENATORS[name.lower()] = cls
        return cls
    return decorator


def register_output_storage(name: str):
    """Decorator to register an output storage class."""
    def decorator(cls):
        _OUTPUT_STORAGES[name.lower()] = cls
        return cls
    return decorator


def get_provider(name: str, **kwargs) -> BaseGenerationProvider:
    """
    Get a generation provider instance.

    Args:
        name: Provider name (e.g., 'replicate')
        **kwargs: Provider-specific arguments

    Returns:
        Configured provider instance

    Raises:
        ValueError: If provider name is not recognized
    """
    name_lower = name.lower()

    if name_lower not in _PROVIDERS:
        if name_lower == "replicate":
            from .replicate import ReplicateProvider  # noqa: F401
        else:
            raise ValueError(f"Unknown provider: {name}")

    return _PROVIDERS[name_lower](**kwargs)


def get_concatenation_provider(name: str, **kwargs) -> BaseConcatenationProvider:
    """
    Get a concatenation provider instance.

    Args:
        name: Provider name ('http' or 'ffmpeg')
        **kwargs: Provider-specific arguments
    """
    name_lower = name.lower()

    if name_lower not in _CONCATENATORS:
        if name_lower in ("http", "ffmpeg"):
            from . import concat  # noqa: F401
        else:
            raise ValueError(f"Unknown concatenation provider: {name}")

    return _CONCATENATORS[name_lower](**kwargs)


def get_output_storage(name: str, **kwargs):
    """
    Get an output storage instance.

    Args:
        name: Backend name ('provider' or 'local')
        **kwargs: Backend-specific arguments
    """
    name_lower = name.lower()

    if name_lower not in _OUTPUT_STORAGES:
        if name_lower in ("provider", "local"):
            from . import outputs  # noqa: F401
        else:
            raise ValueError(f"Unknown output storage: {name}")

    return _OUTPUT_STORAGES[name_lower](**kwargs)


def list_providers() -> List[str]:
    """List all available generation provider names."""
    from . import replicate  # noqa: F401

    return list(_PROVIDERS.keys())
