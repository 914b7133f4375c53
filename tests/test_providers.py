from __future__ import annotations

import asyncio
import json
import subprocess
from pathlib import Path

import httpx
import pytest

from section_video.api import get_concatenation_provider, get_output_storage, get_provider, list_providers
from section_video.api.base import CompileRequest
from section_video.api.concat import FfmpegConcatenationProvider, HttpConcatenationProvider
from section_video.api.outputs import LocalOutputStorage
from section_video.api.replicate import ReplicateProvider
from section_video.core.exceptions import ProviderError, ProviderTimeout
from section_video.core.models import ModelRegistry


@pytest.fixture
def registry() -> ModelRegistry:
    return ModelRegistry.from_dict()


def _replicate(handler) -> ReplicateProvider:
    return ReplicateProvider(api_key="r8_secret", transport=httpx.MockTransport(handler))


def test_replicate_submits_to_official_model_endpoint(registry):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "pred-abc", "status": "starting"})

    profile = registry.require("kling-v2.1")
    provider = _replicate(handler)

    result = asyncio.run(provider.submit(profile, {"prompt": "a door", "duration": 5}, "https://app.test/hook"))

    assert seen["url"] == "https://api.replicate.com/v1/models/kwaivgi/kling-v2.1/predictions"
    assert seen["auth"] == "Bearer r8_secret"
    assert seen["body"] == {
        "input": {"prompt": "a door", "duration": 5},
        "webhook": "https://app.test/hook",
        "webhook_events_filter": ["start", "completed"],
    }
    assert result.correlation_id == "pred-abc"
    assert result.estimated_cost == pytest.approx(0.25)
    assert result.estimated_time == 240


def test_replicate_pinned_version_uses_predictions_endpoint():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "pred-v"})

    registry = ModelRegistry.from_dict(
        {
            "hunyuan": {
                "family": "hunyuan",
                "replicate_model": "zsxkib/hunyuan-video-lora",
                "version": "04d4b8d9",
                "supported_params": ["prompt", "num_frames", "frame_rate"],
            }
        }
    )

    asyncio.run(_replicate(handler).submit(registry.require("hunyuan"), {"prompt": "x", "num_frames": 48, "frame_rate": 24}))

    assert seen["url"] == "https://api.replicate.com/v1/predictions"
    assert seen["body"]["version"] == "04d4b8d9"
    assert "webhook" not in seen["body"]


def test_replicate_rejection_raises_provider_error(registry):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"detail": "- input.duration: must be 5 or 10"})

    with pytest.raises(ProviderError) as exc:
        asyncio.run(_replicate(handler).submit(registry.require("kling-v2.1"), {"prompt": "x"}))

    assert exc.value.details["status_code"] == 422
    assert exc.value.recoverable is False
    assert "must be 5 or 10" in exc.value.message


def test_replicate_server_error_is_recoverable(registry):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream unavailable")

    with pytest.raises(ProviderError) as exc:
        asyncio.run(_replicate(handler).submit(registry.require("kling-v2.1"), {"prompt": "x"}))

    assert exc.value.recoverable is True


def test_replicate_timeout(registry):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderTimeout):
        asyncio.run(_replicate(handler).submit(registry.require("kling-v2.1"), {"prompt": "x"}))


def test_replicate_response_without_id(registry):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"status": "starting"})

    with pytest.raises(ProviderError):
        asyncio.run(_replicate(handler).submit(registry.require("kling-v2.1"), {"prompt": "x"}))


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(201, text="<html>gateway</html>"),
        httpx.Response(201, json=[{"id": "pred-abc"}]),
    ],
)
def test_replicate_unreadable_acceptance_raises_provider_error(registry, response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    with pytest.raises(ProviderError):
        asyncio.run(_replicate(handler).submit(registry.require("kling-v2.1"), {"prompt": "x"}))


def test_factories(monkeypatch, tmp_path):
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8_from_env")

    provider = get_provider("replicate")

    assert isinstance(provider, ReplicateProvider)
    assert provider.api_key == "r8_from_env"
    assert "replicate" in list_providers()
    assert isinstance(get_concatenation_provider("http"), HttpConcatenationProvider)
    assert isinstance(
        get_concatenation_provider("ffmpeg", output_path=tmp_path / "out"), FfmpegConcatenationProvider
    )
    with pytest.raises(ValueError):
        get_provider("sora")
    with pytest.raises(ValueError):
        get_concatenation_provider("s3")


def test_http_concatenation_posts_ordered_urls():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {"compiledVideoUrl": "https://cdn.test/final.mp4", "fileSize": 2048, "duration": 22.1},
            },
        )

    provider = HttpConcatenationProvider(base_url="http://compile.test/", transport=httpx.MockTransport(handler))
    request = CompileRequest(ordered_urls=["https://a/1.mp4", "https://a/2.mp4"], section_id="sec-1")

    result = asyncio.run(provider.compile(request))

    assert seen["url"] == "http://compile.test/compile-videos"
    assert seen["body"] == {
        "sectionId": "sec-1",
        "videoUrls": ["https://a/1.mp4", "https://a/2.mp4"],
        "outputFormat": "mp4",
        "quality": "high",
    }
    assert result.compiled_url == "https://cdn.test/final.mp4"
    assert result.file_size == 2048
    assert result.duration == 22.1


def test_http_concatenation_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"success": False, "message": "ffmpeg crashed"})

    provider = HttpConcatenationProvider(base_url="http://compile.test", transport=httpx.MockTransport(handler))

    with pytest.raises(ProviderError) as exc:
        asyncio.run(provider.compile(CompileRequest(ordered_urls=["https://a/1.mp4"])))

    assert "ffmpeg crashed" in exc.value.message


def test_ffmpeg_command_and_file_list(tmp_path):
    provider = FfmpegConcatenationProvider(output_path=tmp_path)
    clips = [tmp_path / "clip-001.mp4", tmp_path / "clip-002.mp4"]

    assert provider.build_file_list(clips) == f"file '{clips[0]}'\nfile '{clips[1]}'\n"

    copy = provider.build_command(tmp_path / "list.txt", tmp_path / "out.mp4", CompileRequest(ordered_urls=[]))
    assert copy[:8] == ["ffmpeg", "-y", "-f", "concat", "-safe", "0", "-i", str(tmp_path / "list.txt")]
    assert "copy" in copy

    webm = provider.build_command(
        tmp_path / "list.txt", tmp_path / "out.webm", CompileRequest(ordered_urls=[], output_format="webm", quality="low")
    )
    assert "libvpx-vp9" in webm
    assert webm[-1] == str(tmp_path / "out.webm")


def test_ffmpeg_compile_downloads_in_order(tmp_path, monkeypatch):
    downloaded = []

    def handler(request: httpx.Request) -> httpx.Response:
        downloaded.append(str(request.url))
        return httpx.Response(200, content=b"fake-mp4")

    provider = FfmpegConcatenationProvider(output_path=tmp_path / "out", transport=httpx.MockTransport(handler))
    runs = []

    def fake_run(cmd):
        runs.append(cmd)
        listing = Path(cmd[cmd.index("-i") + 1]).read_text()
        assert listing.index("clip-001") < listing.index("clip-002")
        Path(cmd[-1]).write_bytes(b"joined")

    monkeypatch.setattr(provider, "_run", fake_run)
    monkeypatch.setattr(provider, "_get_video_duration", lambda path: 15.0)

    result = asyncio.run(
        provider.compile(CompileRequest(ordered_urls=["https://a/1.mp4", "https://a/2.mp4"], section_id="sec-1"))
    )

    assert downloaded == ["https://a/1.mp4", "https://a/2.mp4"]
    assert len(runs) == 1
    assert result.compiled_url.startswith("file://")
    assert result.file_size == len(b"joined")
    assert result.duration == 15.0


def test_ffmpeg_run_uses_configured_timeout(tmp_path, monkeypatch):
    seen = {}

    def fake_subprocess_run(cmd, **kwargs):
        seen.update(kwargs)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr("section_video.api.concat.subprocess.run", fake_subprocess_run)

    FfmpegConcatenationProvider(output_path=tmp_path, timeout=42)._run(["ffmpeg", "-version"])

    assert seen["timeout"] == 42


def test_ffmpeg_timeout_raises_provider_error(tmp_path, monkeypatch):
    def fake_subprocess_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr("section_video.api.concat.subprocess.run", fake_subprocess_run)

    with pytest.raises(ProviderError):
        FfmpegConcatenationProvider(output_path=tmp_path, timeout=1)._run(["ffmpeg"])


def test_output_storage_factory(tmp_path):
    assert get_output_storage("provider").persist("https://cdn.test/a.mp4", "u/j/result") == "https://cdn.test/a.mp4"
    assert isinstance(get_output_storage("local", directory=tmp_path), LocalOutputStorage)
    with pytest.raises(ValueError):
        get_output_storage("s3")


def test_local_output_storage_without_public_url_returns_file_url(tmp_path):
    storage = LocalOutputStorage(
        directory=tmp_path,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"clip")),
    )

    url = storage.persist("https://cdn.test/path/out.MP4?token=abc", "unit-1/job-1/result")

    assert url == (tmp_path / "unit-1" / "job-1" / "result.mp4").resolve().as_uri()
    assert (tmp_path / "unit-1" / "job-1" / "result.mp4").read_bytes() == b"clip"


def test_ffmpeg_compile_reads_stored_local_clips(tmp_path, monkeypatch):
    stored = tmp_path / "media" / "clip.mp4"
    stored.parent.mkdir()
    stored.write_bytes(b"local clip")
    provider = FfmpegConcatenationProvider(output_path=tmp_path / "out")

    def fake_run(cmd):
        listing = Path(cmd[cmd.index("-i") + 1]).read_text().splitlines()
        assert Path(listing[0].split("'")[1]).read_bytes() == b"local clip"
        Path(cmd[-1]).write_bytes(b"joined")

    monkeypatch.setattr(provider, "_run", fake_run)
    monkeypatch.setattr(provider, "_get_video_duration", lambda path: 5.0)

    result = asyncio.run(provider.compile(CompileRequest(ordered_urls=[stored.resolve().as_uri()])))

    assert result.duration == 5.0
