from __future__ import annotations

import pytest

from section_video.core.config import Config
from section_video.core.exceptions import ConfigurationError, ValidationError
from section_video.core.models import DEFAULT_MODEL_PROFILES, ModelProfile, ModelRegistry


def test_config_defaults():
    config = Config()

    assert config.generation.provider == "replicate"
    assert config.generation.acceptance_timeout == 30.0
    assert config.webhook.tolerance_seconds == 300
    assert config.chaining.sequential_dispatch is True
    assert "pt-br" in config.segmentation.languages
    assert config.compilation.output_formats == ["mp4", "webm"]


def test_config_load_interpolates_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_WEBHOOK_SECRET", "whsec_abc")
    monkeypatch.delenv("TEST_UNSET_TOKEN", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "generation:\n"
        "  api_token: ${TEST_UNSET_TOKEN}\n"
        "  webhook_url: ${TEST_PUBLIC_URL:-http://localhost:9000}/api/webhooks/replicate\n"
        "webhook:\n"
        "  secret: ${TEST_WEBHOOK_SECRET}\n"
        "storage:\n"
        f"  database_path: {tmp_path / 'db.sqlite'}\n"
    )

    config = Config.load(path)

    assert config.webhook.secret == "whsec_abc"
    assert config.generation.api_token is None
    assert config.generation.webhook_url == "http://localhost:9000/api/webhooks/replicate"
    assert config.storage.database_path == str(tmp_path / "db.sqlite")


def test_config_load_missing_explicit_path(tmp_path):
    with pytest.raises(ConfigurationError):
        Config.load(tmp_path / "missing.yaml")


def test_config_rejects_invalid_values():
    with pytest.raises(ConfigurationError):
        Config.from_dict({"generation": {"provider": "sora"}})
    with pytest.raises(ConfigurationError):
        Config.from_dict({"generation": {"acceptance_timeout": 0}})
    with pytest.raises(ConfigurationError):
        Config.from_dict({"compilation": {"provider": "s3"}})
    with pytest.raises(ConfigurationError):
        Config.from_dict({"webhook": {"unknown_key": 1}})


def test_config_to_dict_round_trips_sections():
    data = Config().to_dict()

    assert set(data) == set(Config.SECTIONS) | {"models"}
    assert Config.from_dict(data).generation.webhook_events == ["start", "completed"]


def test_registry_loads_default_profiles():
    registry = ModelRegistry.from_dict()

    assert registry.list_models() == sorted(DEFAULT_MODEL_PROFILES)
    assert registry.require("kling-v2.1").max_unit_duration == 10


def test_registry_require_unknown_model():
    with pytest.raises(ValidationError) as exc:
        ModelRegistry.from_dict().require("sora-2")

    assert exc.value.details["field"] == "model_id"


def _profile(**overrides) -> dict:
    data = {
        "family": "kling",
        "replicate_model": "kwaivgi/kling-v2.1",
        "supported_params": ["prompt", "duration", "cfg_scale"],
    }
    data.update(overrides)
    return data


@pytest.mark.parametrize(
    "overrides",
    [
        {"family": "unknown"},
        {"supported_params": ["prompt", "motion_bucket"]},
        {"defaults": {"aspect_ratio": "16:9"}},
        {"defaults": {"cfg_scale": 3.0}},
        {"supports_reference_images": True, "reference_param": "start_image"},
        {"min_unit_duration": 12},
        {"not_a_field": True},
    ],
)
def test_registry_rejects_invalid_profiles(overrides):
    with pytest.raises(ConfigurationError):
        ModelRegistry.from_dict({"bad": _profile(**overrides)})


def test_build_parameters_filters_and_validates():
    registry = ModelRegistry.from_dict({"m": _profile(defaults={"cfg_scale": 0.5})})
    profile = registry.require("m")

    payload = registry.build_parameters(
        profile,
        {"duration": 5, "seed": 7, "prompt": "ignored", "extra": "x", "cfg_scale": None},
        prompt="a red door",
    )

    assert payload == {"prompt": "a red door", "duration": 5, "cfg_scale": 0.5}


def test_build_parameters_rejects_out_of_range_values():
    registry = ModelRegistry.from_dict({"m": _profile()})

    with pytest.raises(ValidationError):
        registry.build_parameters(registry.require("m"), {"duration": 30}, prompt="a red door")


def test_reference_value_matches_parameter_shape():
    single = ModelProfile.from_dict(
        "a", _profile(supports_reference_images=True, reference_param="start_image", supported_params=["prompt", "start_image"])
    )
    many = ModelProfile.from_dict(
        "b",
        _profile(
            supports_reference_images=True,
            reference_param="reference_images",
            supported_params=["prompt", "reference_images"],
        ),
    )

    assert single.reference_value("https://x/ref.png") == "https://x/ref.png"
    assert many.reference_value("https://x/ref.png") == ["https://x/ref.png"]


def test_output_storage_backend_is_validated():
    assert Config.from_dict({"outputs": {"backend": "local"}}).outputs.backend == "local"
    assert Config().outputs.backend == "provider"
    with pytest.raises(ConfigurationError):
        Config.from_dict({"outputs": {"backend": "s3"}})
