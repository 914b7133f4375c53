"""
Configuration System
====================

Centralized, validated configuration management with typed dataclasses.

The configuration is loaded once at process start and passed to the
pipeline; nothing re-reads configuration files per request.
"""

import os
import re
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass
class GenerationConfig:
    """Generation provider settings."""

    provider: str = "replicate"
    base_url: Optional[str] = None
    api_token: Optional[str] = None
    acceptance_timeout: float = 30.0
    webhook_url: Optional[str] = None
    webhook_events: List[str] = field(default_factory=lambda: ["start", "completed"])

    VALID_PROVIDERS = {"replicate"}

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.provider not in self.VALID_PROVIDERS:
            raise ConfigurationError(
                f"Invalid generation provider: {self.provider}",
                config_key="generation.provider",
            )
        if not 0 < self.acceptance_timeout <= 120:
            raise ConfigurationError(
                f"acceptance_timeout must be 0-120 seconds, got {self.acceptance_timeout}",
                config_key="generation.acceptance_timeout",
            )


@dataclass
class WebhookConfig:
    """Inbound webhook verification settings."""

    secret: Optional[str] = None
    tolerance_seconds: int = 300

    def __post_init__(self):
        if self.tolerance_seconds <= 0:
            raise ConfigurationError(
                f"tolerance_seconds must be positive, got {self.tolerance_seconds}",
                config_key="webhook.tolerance_seconds",
            )


@dataclass
class ChainingConfig:
    """Continuity chaining between units."""

    enabled: bool = True
    sequential_dispatch: bool = True


@dataclass
class SegmentationConfig:
    """Script segmentation settings."""

    languages: List[str] = field(default_factory=lambda: ["pt-br", "en", "es", "it", "fr", "de"])
    max_units: int = 60

    def __post_init__(self):
        if not self.languages:
            raise ConfigurationError("At least one language is required", config_key="segmentation.languages")
        if self.max_units < 1:
            raise ConfigurationError(
                f"max_units must be at least 1, got {self.max_units}",
                config_key="segmentation.max_units",
            )


@dataclass
class CompilationConfig:
    """Concatenation provider settings."""

    provider: str = "http"
    base_url: Optional[str] = None
    api_token: Optional[str] = None
    timeout: float = 300.0
    output_path: str = "./output/compiled"
    output_formats: List[str] = field(default_factory=lambda: ["mp4", "webm"])
    qualities: List[str] = field(default_factory=lambda: ["high", "medium", "low"])

    VALID_PROVIDERS = {"http", "ffmpeg"}

    def __post_init__(self):
        if self.provider not in self.VALID_PROVIDERS:
            raise ConfigurationError(
                f"Invalid compilation provider: {self.provider}",
                config_key="compilation.provider",
            )


@dataclass
class OutputStorageConfig:
    """Where completed outputs are copied."""

    backend: str = "provider"
    directory: str = "./output/media"
    public_base_url: Optional[str] = None
    timeout: float = 120.0

    VALID_BACKENDS = {"provider", "local"}

    def __post_init__(self):
        if self.backend not in self.VALID_BACKENDS:
            raise ConfigurationError(
                f"Invalid output storage backend: {self.backend}",
                config_key="outputs.backend",
            )


@dataclass
class StorageConfig:
    """Persistence settings."""

    database_path: str = "./data/section_video.db"


# =============================================================================
# Main Configuration Class
# =============================================================================


@dataclass
class Config:
    """
    Main configuration container with validation and loading.

    Provides:
    - Type-safe access to configuration values
    - Validation on load
    - Environment variable interpolation
    - Sensible defaults for all values
    """

    generation: GenerationConfig = field(default_factory=GenerationConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    chaining: ChainingConfig = field(default_factory=ChainingConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    compilation: CompilationConfig = field(default_factory=CompilationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    outputs: OutputStorageConfig = field(default_factory=OutputStorageConfig)

    # Model registry entries, validated by ModelRegistry
    models: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    SECTIONS = ("generation", "webhook", "chaining", "segmentation", "compilation", "storage", "outputs")

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "Config":
        """
        Load configuration from file with environment variable interpolation.

        Args:
            path: Path to YAML config file

        Returns:
            Validated Config instance
        """
        search_paths = [
            Path("./config/defaults.yaml"),
            Path("./defaults.yaml"),
            Path.home() / ".section-video" / "config.yaml",
        ]

        if path:
            if not Path(path).exists():
                raise ConfigurationError(f"Config file not found: {path}", config_key=str(path))
            search_paths.insert(0, Path(path))

        config_data = {}

        for search_path in search_paths:
            if search_path.exists():
                logger.info(f"Loading config from: {search_path}")
                try:
                    with open(search_path, "r") as f:
                        config_data = yaml.safe_load(f) or {}
                    break
                except yaml.YAMLError as e:
                    raise ConfigurationError(
                        f"Invalid YAML in config file: {e}",
                        config_key=str(search_path),
                    )
        else:
            logger.info("No config file found, using defaults")

        config_data = cls._interpolate_env_vars(config_data)

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary with validation."""
        try:
            return cls(
                generation=GenerationConfig(**(data.get("generation") or {})),
                webhook=WebhookConfig(**(data.get("webhook") or {})),
                chaining=ChainingConfig(**(data.get("chaining") or {})),
                segmentation=SegmentationConfig(**(data.get("segmentation") or {})),
                compilation=CompilationConfig(**(data.get("compilation") or {})),
                storage=StorageConfig(**(data.get("storage") or {})),
                outputs=OutputStorageConfig(**(data.get("outputs") or {})),
                models=data.get("models") or {},
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @staticmethod
    def _interpolate_env_vars(data: Any) -> Any:
        """Recursively interpolate ${VAR} patterns with environment variables."""
        if isinstance(data, str):
            pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

            def replace(match):
                var_name = match.group(1)
                default = match.group(2) or ""
                return os.environ.get(var_name, default)

            value = re.sub(pattern, replace, data)
            # An unset variable without a default means "not configured"
            return value if value != "" else None
        elif isinstance(data, dict):
            return {k: Config._interpolate_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [Config._interpolate_env_vars(item) for item in data]
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        result = {section: asdict(getattr(self, section)) for section in self.SECTIONS}
        result["models"] = self.models
        return result
