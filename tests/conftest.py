from __future__ import annotations

import asyncio
import base64
import json
import uuid

import pytest

from section_video.api.base import (
    BaseConcatenationProvider,
    BaseGenerationProvider,
    CompileResult,
    SubmissionResult,
)
from section_video.core.config import Config
from section_video.core.exceptions import ProviderError
from section_video.core.security import sign_webhook
from section_video.workflow.pipeline import SectionPipeline

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"section-video-test-signing-key").decode("ascii")

SCRIPT = (
    "Most people never finish the course they buy. "
    "The problem is not discipline, it is the plan. "
    "This method gives you one small step per day."
)


class _FakeGenerationProvider(BaseGenerationProvider):
    def __init__(self) -> None:
        super().__init__(api_key="r8_test")
        self.calls: list[dict] = []
        self.error: Exception | None = None
        self.delay: float = 0.0

    @property
    def provider_name(self) -> str:
        return "fake"

    def _get_default_base_url(self) -> str:
        return "http://generation.test"

    async def submit(self, profile, parameters, webhook_url=None) -> SubmissionResult:
        self.calls.append({"model_id": profile.model_id, "parameters": dict(parameters), "webhook_url": webhook_url})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        prediction_id = f"pred-{len(self.calls)}"
        return SubmissionResult(
            job_id=prediction_id,
            correlation_id=prediction_id,
            estimated_cost=self.estimate_cost(profile, parameters),
            estimated_time=profile.generation_time_seconds,
        )


class _FakeConcatenator(BaseConcatenationProvider):
    def __init__(self) -> None:
        self.requests = []
        self.error: Exception | None = None
        self.duration: float | None = None
        self.closed = False

    @property
    def provider_name(self) -> str:
        return "fake-concat"

    async def compile(self, request) -> CompileResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return CompileResult(
            compiled_url=f"https://cdn.test/compiled/{request.section_id}.{request.output_format}",
            file_size=1024,
            duration=self.duration,
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config_data(tmp_path) -> dict:
    return {
        "generation": {"webhook_url": "https://app.test/api/webhooks/replicate"},
        "webhook": {"secret": WEBHOOK_SECRET},
        "storage": {"database_path": str(tmp_path / "pipeline.db")},
    }


@pytest.fixture
def config(config_data) -> Config:
    return Config.from_dict(config_data)


@pytest.fixture
def provider() -> _FakeGenerationProvider:
    return _FakeGenerationProvider()


@pytest.fixture
def concatenator() -> _FakeConcatenator:
    return _FakeConcatenator()


@pytest.fixture
def pipeline(config, provider, concatenator) -> SectionPipeline:
    return SectionPipeline(config, provider=provider, concatenator=concatenator)


@pytest.fixture
def store(pipeline):
    return pipeline.store


@pytest.fixture
def make_section(pipeline):
    """Create and segment a section; 22s on kling-v2.1 gives [8, 7, 7]."""

    def _make(duration: float = 22, model_id: str = "kling-v2.1", language: str = "en"):
        section = pipeline.create_section(SCRIPT, duration, language)
        units = pipeline.segment(section.id, duration, language, model_id)
        return section, units

    return _make


@pytest.fixture
def deliver(pipeline):
    """Sign and deliver a webhook event to the pipeline."""

    def _deliver(event: dict, secret: str = WEBHOOK_SECRET, timestamp: int | None = None):
        body = json.dumps(event)
        headers = sign_webhook(secret, f"msg_{uuid.uuid4().hex[:12]}", body, timestamp=timestamp)
        return pipeline.handle_webhook(headers, body.encode("utf-8"))

    return _deliver


@pytest.fixture
def complete_unit(pipeline, deliver):
    """Dispatch a unit and deliver a successful terminal webhook for it."""

    def _complete(unit_id: str, output=None):
        receipt = asyncio.run(pipeline.dispatch(unit_id))
        outcome = deliver(
            {
                "id": receipt.correlation_id,
                "status": "succeeded",
                "output": output or [f"https://cdn.test/{unit_id}.mp4", f"https://cdn.test/{unit_id}.jpg"],
                "metrics": {"predict_time": 12.5, "total_time": 14.0},
            }
        )
        assert outcome.status_code == 200
        return receipt

    return _complete


@pytest.fixture
def failing_error() -> ProviderError:
    return ProviderError("model is cold", provider="fake", status_code=422)
