from __future__ import annotations

import asyncio

import pytest

from section_video.core.exceptions import CompilationError, EmptySetError, ProviderError, ValidationError


@pytest.fixture
def reviewed_section(pipeline, make_section, complete_unit):
    """Section with units 1 and 3 approved and unit 2 only completed."""
    section, units = make_section(22)
    for unit in units:
        complete_unit(unit.id)
    pipeline.approve(units[0].id)
    pipeline.approve(units[2].id)
    return section, units


def test_compile_uses_approved_units_in_order(pipeline, store, concatenator, reviewed_section):
    section, units = reviewed_section

    artifact = asyncio.run(pipeline.compile(section.id))

    request = concatenator.requests[0]
    assert request.ordered_urls == [f"https://cdn.test/{units[0].id}.mp4", f"https://cdn.test/{units[2].id}.mp4"]
    assert request.output_format == "mp4"
    assert request.quality == "high"

    assert artifact.ordered_unit_ids == [units[0].id, units[2].id]
    assert artifact.output_url == f"https://cdn.test/compiled/{section.id}.mp4"
    assert artifact.duration == 15
    assert artifact.file_size == 1024
    assert [a.id for a in store.list_artifacts(section.id)] == [artifact.id]


def test_compile_prefers_provider_duration(pipeline, concatenator, reviewed_section):
    section, _ = reviewed_section
    concatenator.duration = 14.9

    artifact = asyncio.run(pipeline.compile(section.id, output_format="webm", quality="medium"))

    assert artifact.duration == 14.9
    assert artifact.output_format == "webm"
    assert artifact.quality == "medium"


def test_compile_without_approved_units(pipeline, store, concatenator, make_section, complete_unit):
    section, units = make_section(22)
    complete_unit(units[0].id)

    with pytest.raises(EmptySetError):
        asyncio.run(pipeline.compile(section.id))

    assert concatenator.requests == []
    assert store.count_rows()["compiled_artifacts"] == 0


@pytest.mark.parametrize("options", [{"output_format": "avi"}, {"quality": "ultra"}])
def test_compile_rejects_unsupported_options(pipeline, reviewed_section, options):
    section, _ = reviewed_section

    with pytest.raises(ValidationError):
        asyncio.run(pipeline.compile(section.id, **options))


def test_compile_provider_failure_persists_nothing(pipeline, store, concatenator, reviewed_section):
    section, _ = reviewed_section
    concatenator.error = ProviderError("ffmpeg exited with 1", provider="fake-concat")

    with pytest.raises(CompilationError) as exc:
        asyncio.run(pipeline.compile(section.id))

    assert exc.value.details["unit_count"] == 2
    assert store.count_rows()["compiled_artifacts"] == 0
