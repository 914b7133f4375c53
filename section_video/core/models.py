"""
Model Registry
==============

Typed model profiles and per-family parameter schemas.

Each model profile names a family; the family's pydantic schema defines every
parameter the provider accepts for it. Profiles are checked against their
schema once when the registry is built, and each request payload is filtered
to the profile's whitelist and validated again before it leaves the process.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Type, Union, get_args, get_origin

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Parameter Schemas
# =============================================================================


class VideoParameters(BaseModel):
    """Parameters shared by every video family."""

    model_config = ConfigDict(extra="forbid")

    prompt: str = Field(..., min_length=1)
    negative_prompt: Optional[str] = None
    seed: Optional[int] = Field(None, ge=0)
    aspect_ratio: Optional[str] = None


class KlingParameters(VideoParameters):
    duration: Optional[int] = Field(None, ge=1, le=10)
    cfg_scale: Optional[float] = Field(None, ge=0.0, le=1.0)
    start_image: Optional[str] = None
    reference_images: Optional[List[str]] = Field(None, max_length=4)


class VeoParameters(VideoParameters):
    duration: Optional[int] = Field(None, ge=1, le=8)
    resolution: Optional[str] = None
    generate_audio: Optional[bool] = None
    image: Optional[str] = None
    reference_images: Optional[List[str]] = Field(None, max_length=3)


class HunyuanParameters(VideoParameters):
    num_frames: Optional[int] = Field(None, ge=1, le=300)
    frame_rate: Optional[int] = Field(None, ge=1, le=60)
    width: Optional[int] = Field(None, ge=64)
    height: Optional[int] = Field(None, ge=64)
    steps: Optional[int] = Field(None, ge=1, le=150)
    lora_url: Optional[str] = None
    lora_strength: Optional[float] = Field(None, ge=0.0, le=2.0)
    image: Optional[str] = None


class WanParameters(VideoParameters):
    num_frames: Optional[int] = Field(None, ge=1, le=300)
    frames_per_second: Optional[int] = Field(None, ge=1, le=60)
    resolution: Optional[str] = None
    sample_steps: Optional[int] = Field(None, ge=1, le=100)
    lora_weights: Optional[str] = None
    lora_scale: Optional[float] = Field(None, ge=0.0, le=2.0)
    image: Optional[str] = None


PARAMETER_SCHEMAS: Dict[str, Type[VideoParameters]] = {
    "kling": KlingParameters,
    "veo": VeoParameters,
    "hunyuan": HunyuanParameters,
    "wan": WanParameters,
}


# =============================================================================
# Model Profiles
# =============================================================================


@dataclass
class ModelProfile:
    """Per-model generation constraints and parameter whitelist."""

    model_id: str
    family: str
    replicate_model: str
    version: Optional[str] = None
    max_unit_duration: float = 10.0
    min_unit_duration: float = 1.0
    generation_time_seconds: int = 120
    cost_per_second: float = 0.10
    supports_reference_images: bool = False
    reference_param: Optional[str] = None
    supported_params: List[str] = field(default_factory=lambda: ["prompt"])
    defaults: Dict[str, Any] = field(default_factory=dict)

    @property
    def schema(self) -> Type[VideoParameters]:
        return PARAMETER_SCHEMAS[self.family]

    def validate(self) -> None:
        """Check the profile against its family schema."""
        key = f"models.{self.model_id}"

        if self.family not in PARAMETER_SCHEMAS:
            raise ConfigurationError(
                f"Unknown model family '{self.family}' for {self.model_id}",
                config_key=f"{key}.family",
            )
        if not 0 < self.min_unit_duration <= self.max_unit_duration:
            raise ConfigurationError(
                f"Unit duration bounds invalid for {self.model_id}: "
                f"min={self.min_unit_duration}, max={self.max_unit_duration}",
                config_key=f"{key}.max_unit_duration",
            )

        fields = set(self.schema.model_fields)
        unknown = [p for p in self.supported_params if p not in fields]
        if unknown:
            raise ConfigurationError(
                f"Parameters not accepted by the {self.family} family: {', '.join(unknown)}",
                config_key=f"{key}.supported_params",
            )

        stray_defaults = [p for p in self.defaults if p not in self.supported_params]
        if stray_defaults:
            raise ConfigurationError(
                f"Defaults outside the whitelist: {', '.join(stray_defaults)}",
                config_key=f"{key}.defaults",
            )

        if self.supports_reference_images:
            if not self.reference_param or self.reference_param not in self.supported_params:
                raise ConfigurationError(
                    f"{self.model_id} supports reference images but does not whitelist its reference parameter",
                    config_key=f"{key}.reference_param",
                )

        try:
            self.schema.model_validate({"prompt": "profile check", **self.defaults})
        except pydantic.ValidationError as e:
            raise ConfigurationError(
                f"Invalid defaults for {self.model_id}: {e}",
                config_key=f"{key}.defaults",
            )

    def reference_value(self, url: str) -> Any:
        """Shape a reference image URL the way this model's parameter expects."""
        annotation = self.schema.model_fields[self.reference_param].annotation
        if get_origin(annotation) is Union:
            annotation = next(a for a in get_args(annotation) if a is not type(None))
        if get_origin(annotation) is list:
            return [url]
        return url

    @classmethod
    def from_dict(cls, model_id: str, data: Dict[str, Any]) -> "ModelProfile":
        try:
            return cls(model_id=model_id, **data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid model profile {model_id}: {e}", config_key=f"models.{model_id}")


DEFAULT_MODEL_PROFILES: Dict[str, Dict[str, Any]] = {
    "kling-v2.1": {
        "family": "kling",
        "replicate_model": "kwaivgi/kling-v2.1",
        "max_unit_duration": 10,
        "min_unit_duration": 5,
        "generation_time_seconds": 240,
        "cost_per_second": 0.05,
        "supports_reference_images": True,
        "reference_param": "start_image",
        "supported_params": ["prompt", "negative_prompt", "duration", "cfg_scale", "start_image", "aspect_ratio"],
        "defaults": {"cfg_scale": 0.5, "aspect_ratio": "16:9"},
    },
    "veo-3-fast": {
        "family": "veo",
        "replicate_model": "google/veo-3-fast",
        "max_unit_duration": 8,
        "min_unit_duration": 4,
        "generation_time_seconds": 90,
        "cost_per_second": 0.40,
        "supports_reference_images": True,
        "reference_param": "image",
        "supported_params": ["prompt", "negative_prompt", "seed", "duration", "resolution", "generate_audio", "image", "aspect_ratio"],
        "defaults": {"resolution": "720p", "generate_audio": False, "aspect_ratio": "16:9"},
    },
    "hunyuan-video": {
        "family": "hunyuan",
        "replicate_model": "zsxkib/hunyuan-video-lora",
        "max_unit_duration": 5,
        "min_unit_duration": 1,
        "generation_time_seconds": 300,
        "cost_per_second": 0.10,
        "supports_reference_images": False,
        "supported_params": ["prompt", "seed", "num_frames", "frame_rate", "width", "height", "steps", "lora_url", "lora_strength"],
        "defaults": {"frame_rate": 24, "width": 854, "height": 480, "steps": 50},
    },
}


# =============================================================================
# Registry
# =============================================================================


class ModelRegistry:
    """
    Model profiles loaded once at startup and injected where needed.

    Usage:
        registry = ModelRegistry.from_dict(config.models)
        profile = registry.require("kling-v2.1")
        payload = registry.build_parameters(profile, {"prompt": "...", "seed": 7})
    """

    def __init__(self, profiles: Dict[str, ModelProfile]):
        for profile in profiles.values():
            profile.validate()
        self._profiles = dict(profiles)
        logger.info(f"Model registry loaded with {len(self._profiles)} models: {', '.join(sorted(self._profiles))}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Dict[str, Any]]] = None) -> "ModelRegistry":
        data = data if data else DEFAULT_MODEL_PROFILES
        return cls({model_id: ModelProfile.from_dict(model_id, dict(entry)) for model_id, entry in data.items()})

    def get(self, model_id: str) -> Optional[ModelProfile]:
        return self._profiles.get(model_id)

    def require(self, model_id: str) -> ModelProfile:
        """Return a profile or raise ValidationError if it is not registered."""
        profile = self._profiles.get(model_id)
        if profile is None:
            raise ValidationError(
                f"Model profile not found: {model_id}",
                field="model_id",
                value=model_id,
                constraint=f"one of {sorted(self._profiles)}",
            )
        return profile

    def list_models(self) -> List[str]:
        return sorted(self._profiles)

    def build_parameters(
        self,
        profile: ModelProfile,
        values: Dict[str, Any],
        prompt: str,
    ) -> Dict[str, Any]:
        """
        Merge model defaults with unit values, keep whitelisted names only,
        force the prompt, and validate against the family schema.

        Args:
            profile: Model profile for the unit
            values: Unit-specific and override values (later wins over defaults)
            prompt: Prompt to send, always set regardless of ``values``

        Returns:
            The exact payload to send to the provider

        Raises:
            ValidationError: If the payload does not satisfy the schema
        """
        merged = {**profile.defaults, **{k: v for k, v in values.items() if v is not None}}
        allowed = set(profile.supported_params)

        dropped = sorted(k for k in merged if k not in allowed)
        if dropped:
            logger.debug(f"Dropping parameters not whitelisted for {profile.model_id}: {dropped}")

        payload = {k: v for k, v in merged.items() if k in allowed and v is not None}
        payload["prompt"] = prompt

        try:
            validated = profile.schema.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Invalid parameters for {profile.model_id}: {e.error_count()} error(s)",
                field="parameters",
                value=e.errors()[0].get("loc") if e.errors() else None,
                constraint=str(e.errors()[0].get("msg")) if e.errors() else None,
            )

        return validated.model_dump(exclude_none=True)
