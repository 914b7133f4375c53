from __future__ import annotations

import asyncio

import pytest

from section_video.core.config import Config
from section_video.core.exceptions import (
    DependencyNotReady,
    DispatchRejected,
    DispatchTimeout,
    EmptySetError,
    InvalidStateTransition,
    ValidationError,
)
from section_video.workflow.pipeline import SectionPipeline


def test_dispatch_submits_whitelisted_parameters(pipeline, store, provider, make_section):
    _, units = make_section(22)

    receipt = asyncio.run(pipeline.dispatch(units[0].id))

    assert receipt.correlation_id == "pred-1"
    call = provider.calls[0]
    assert call["webhook_url"] == "https://app.test/api/webhooks/replicate"
    assert call["parameters"] == {
        "prompt": units[0].visual_description,
        "duration": 8,
        "cfg_scale": 0.5,
        "aspect_ratio": "16:9",
    }

    unit = store.get_unit(units[0].id)
    assert unit.status.value == "generating"
    assert unit.correlation_id == "pred-1"

    job = store.get_job(receipt.job_id)
    assert job.status.value == "generating"
    assert job.correlation_id == "pred-1"
    assert job.parameters == call["parameters"]
    assert job.estimated_cost == pytest.approx(0.4)


def test_dispatch_forwards_seed_for_models_that_accept_it(pipeline, provider, make_section):
    _, units = make_section(16, model_id="veo-3-fast")

    asyncio.run(pipeline.dispatch(units[0].id))

    params = provider.calls[0]["parameters"]
    assert params["seed"] == units[0].seed
    assert params["duration"] == 8
    assert params["resolution"] == "720p"


def test_dispatch_derives_frame_count_for_frame_based_models(pipeline, provider, make_section):
    _, units = make_section(5, model_id="hunyuan-video")

    asyncio.run(pipeline.dispatch(units[0].id))

    params = provider.calls[0]["parameters"]
    assert params["num_frames"] == 120
    assert "duration" not in params


def test_dispatch_drops_unknown_overrides_and_applies_known_ones(pipeline, provider, make_section):
    _, units = make_section(22)

    asyncio.run(pipeline.dispatch(units[0].id, {"cfg_scale": 0.8, "guidance_hack": True}))

    params = provider.calls[0]["parameters"]
    assert params["cfg_scale"] == 0.8
    assert "guidance_hack" not in params


def test_dispatch_invalid_override_writes_nothing(pipeline, store, provider, make_section):
    _, units = make_section(22)

    with pytest.raises(ValidationError):
        asyncio.run(pipeline.dispatch(units[0].id, {"cfg_scale": 5}))

    assert provider.calls == []
    assert store.get_unit(units[0].id).status.value == "pending"
    assert store.count_rows()["generation_jobs"] == 0


def test_dispatch_prefers_optimized_prompt(pipeline, store, provider, make_section):
    _, units = make_section(22)
    with store._transaction() as conn:
        conn.execute("UPDATE video_units SET optimized_prompt = ? WHERE id = ?", ("cinematic close-up", units[0].id))

    asyncio.run(pipeline.dispatch(units[0].id))

    assert provider.calls[0]["parameters"]["prompt"] == "cinematic close-up"


def test_dispatch_rejects_unit_in_flight(pipeline, make_section):
    _, units = make_section(22)
    asyncio.run(pipeline.dispatch(units[0].id))

    with pytest.raises(InvalidStateTransition) as exc:
        asyncio.run(pipeline.dispatch(units[0].id))

    assert exc.value.details["current_status"] == "generating"


def test_dispatch_waits_for_previous_unit(pipeline, provider, make_section):
    _, units = make_section(22)

    with pytest.raises(DependencyNotReady) as exc:
        asyncio.run(pipeline.dispatch(units[1].id))
    assert exc.value.details["blocking_unit_id"] == units[0].id

    asyncio.run(pipeline.dispatch(units[0].id))
    with pytest.raises(DependencyNotReady):
        asyncio.run(pipeline.dispatch(units[1].id))

    assert len(provider.calls) == 1


def test_dispatch_without_sequential_gating(config_data, provider, concatenator):
    config_data["chaining"] = {"sequential_dispatch": False}
    pipeline = SectionPipeline(Config.from_dict(config_data), provider=provider, concatenator=concatenator)
    section = pipeline.create_section("One. Two. Three.", 22, "en")
    units = pipeline.segment(section.id, 22, "en", "kling-v2.1")

    receipt = asyncio.run(pipeline.dispatch(units[2].id))

    assert receipt.status == "generating"


def test_dispatch_chains_previous_thumbnail(pipeline, store, provider, make_section, complete_unit):
    _, units = make_section(22)
    complete_unit(units[0].id)

    receipt = asyncio.run(pipeline.dispatch(units[1].id))

    thumbnail = f"https://cdn.test/{units[0].id}.jpg"
    assert receipt.reference_image_url == thumbnail
    assert provider.calls[1]["parameters"]["start_image"] == thumbnail
    assert store.get_unit(units[1].id).reference_image_url == thumbnail


def test_dispatch_explicit_reference_wins(pipeline, store, provider, make_section, complete_unit):
    _, units = make_section(22)
    complete_unit(units[0].id)
    store.set_reference_image(units[1].id, "https://cdn.test/brand.png")

    asyncio.run(pipeline.dispatch(units[1].id))

    assert provider.calls[1]["parameters"]["start_image"] == "https://cdn.test/brand.png"


def test_dispatch_does_not_chain_from_failed_unit(pipeline, store, provider, make_section, deliver):
    _, units = make_section(22)
    receipt = asyncio.run(pipeline.dispatch(units[0].id))
    deliver({"id": receipt.correlation_id, "status": "failed", "error": "NSFW"})

    asyncio.run(pipeline.dispatch(units[1].id))

    assert "start_image" not in provider.calls[1]["parameters"]
    assert store.get_unit(units[1].id).reference_image_url is None


def test_provider_rejection_fails_unit_and_job(pipeline, store, provider, make_section, failing_error):
    _, units = make_section(22)
    provider.error = failing_error

    with pytest.raises(DispatchRejected) as exc:
        asyncio.run(pipeline.dispatch(units[0].id))

    unit = store.get_unit(units[0].id)
    assert unit.status.value == "failed"
    assert "model is cold" in unit.error_message
    job = store.get_job(exc.value.details["job_id"])
    assert job.status.value == "failed"
    assert job.correlation_id is None

    # A failed unit can be dispatched again
    provider.error = None
    receipt = asyncio.run(pipeline.dispatch(units[0].id))
    assert store.get_unit(units[0].id).status.value == "generating"
    assert store.get_unit(units[0].id).current_job_id == receipt.job_id


def test_unexpected_provider_exception_fails_unit_and_job(pipeline, store, provider, make_section):
    _, units = make_section(22)
    provider.error = ValueError("Expecting value: line 1 column 1 (char 0)")

    with pytest.raises(DispatchRejected) as exc:
        asyncio.run(pipeline.dispatch(units[0].id))

    assert exc.value.recoverable is True
    unit = store.get_unit(units[0].id)
    assert unit.status.value == "failed"
    assert "ValueError" in unit.error_message
    assert store.get_job(exc.value.details["job_id"]).status.value == "failed"

    provider.error = None
    asyncio.run(pipeline.dispatch(units[0].id))
    assert store.get_unit(units[0].id).status.value == "generating"


def test_prompt_is_sent_verbatim(pipeline, store, provider, make_section):
    _, units = make_section(22)
    prompt = "Narrator reads the system prompt aloud. " + "x" * 2100
    with store._transaction() as conn:
        conn.execute("UPDATE video_units SET optimized_prompt = ? WHERE id = ?", (prompt, units[0].id))

    asyncio.run(pipeline.dispatch(units[0].id))

    assert provider.calls[0]["parameters"]["prompt"] == prompt


def test_acceptance_timeout_fails_unit(pipeline, store, provider, make_section):
    _, units = make_section(22)
    provider.delay = 1.0
    pipeline.dispatcher.acceptance_timeout = 0.05

    with pytest.raises(DispatchTimeout):
        asyncio.run(pipeline.dispatch(units[0].id))

    assert store.get_unit(units[0].id).status.value == "failed"


def test_dispatch_next_picks_lowest_waiting_unit(pipeline, make_section, complete_unit):
    section, units = make_section(22)

    first = asyncio.run(pipeline.dispatch_next(section.id))
    assert first.unit_id == units[0].id

    with pytest.raises(DependencyNotReady):
        asyncio.run(pipeline.dispatch_next(section.id))


def test_dispatch_next_with_nothing_waiting(pipeline, make_section, complete_unit):
    section, units = make_section(5)
    complete_unit(units[0].id)

    with pytest.raises(EmptySetError):
        asyncio.run(pipeline.dispatch_next(section.id))
