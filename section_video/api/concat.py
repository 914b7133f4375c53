"""
Concatenation Providers
=======================

Join approved clips into one video.

- HttpConcatenationProvider: remote compile service (POST /compile-videos)
- FfmpegConcatenationProvider: downloads clips and runs the ffmpeg concat
  demuxer locally
"""

import asyncio
import logging
import shutil
import subprocess
import tempfile
import uuid
from pathlib import Path
from typing import Optional, List, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx

from ..core.exceptions import ProviderError
from ..core.security import redact_api_key, sanitize_filename
from .base import _HttpProvider, BaseConcatenationProvider, CompileRequest, CompileResult
from .factory import register_concatenator

logger = logging.getLogger(__name__)


# ffmpeg CRF per quality level (used when re-encoding)
QUALITY_CRF = {"high": 18, "medium": 23, "low": 28}


@register_concatenator("http")
class HttpConcatenationProvider(_HttpProvider, BaseConcatenationProvider):
    """
    Client for a remote compile service.

    The service answers ``{"success": bool, "message": str, "data":
    {"compiledVideoUrl", "fileSize", "duration"}}``.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: float = 300.0, **kwargs):
        super().__init__(api_key=api_key, base_url=base_url, timeout=timeout, **kwargs)

    @property
    def provider_name(self) -> str:
        return "compile-service"

    @property
    def env_key_name(self) -> str:
        return "COMPILE_API_TOKEN"

    def _get_default_base_url(self) -> str:
        return "http://localhost:3001"

    def _validate_config(self) -> None:
        # The compile service may run without authentication
        return None

    async def compile(self, request: CompileRequest) -> CompileResult:
        client = await self._get_client()
        payload = {
            "sectionId": request.section_id,
            "videoUrls": request.ordered_urls,
            "outputFormat": request.output_format,
            "quality": request.quality,
        }

        logger.info(f"Requesting compilation of {len(request.ordered_urls)} clips from {self.base_url}")

        try:
            response = await client.post(f"{self.base_url}/compile-videos", json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Compile service unreachable: {redact_api_key(str(e))}",
                provider=self.provider_name,
                recoverable=True,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code != 200 or not data.get("success"):
            raise ProviderError(
                f"Compilation failed: {data.get('message') or response.status_code}",
                provider=self.provider_name,
                status_code=response.status_code,
                response_body=redact_api_key(response.text),
            )

        result = data.get("data") or {}
        compiled_url = result.get("compiledVideoUrl")
        if not compiled_url:
            raise ProviderError("Compile service returned no video URL", provider=self.provider_name)

        return CompileResult(
            compiled_url=compiled_url,
            file_size=result.get("fileSize"),
            duration=result.get("duration"),
        )


@register_concatenator("ffmpeg")
class FfmpegConcatenationProvider(BaseConcatenationProvider):
    """
    Local concatenation with ffmpeg.

    Clips are downloaded into a scratch directory, joined with the concat
    demuxer, and written under ``output_path``. The returned URL is a
    ``file://`` URL to the compiled video.
    """

    def __init__(
        self,
        output_path: Union[str, Path] = "./output/compiled",
        timeout: float = 300.0,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        self.output_path = Path(output_path)
        self.output_path.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "ffmpeg"

    async def compile(self, request: CompileRequest) -> CompileResult:
        name = sanitize_filename(f"{request.section_id or 'section'}_{uuid.uuid4().hex[:8]}.{request.output_format}")
        output = self.output_path / name

        with tempfile.TemporaryDirectory(prefix="compile_") as tmp:
            tmp_dir = Path(tmp)
            clips = await self._download(request.ordered_urls, tmp_dir)
            list_path = tmp_dir / "filelist.txt"
            list_path.write_text(self.build_file_list(clips))

            cmd = self.build_command(list_path, output, request)
            await asyncio.to_thread(self._run, cmd)

        if not output.exists():
            raise ProviderError("ffmpeg produced no output", provider=self.provider_name)

        duration = await asyncio.to_thread(self._get_video_duration, output)
        logger.info(f"Concatenated {len(request.ordered_urls)} clips to {output}")

        return CompileResult(
            compiled_url=output.resolve().as_uri(),
            file_size=output.stat().st_size,
            duration=duration,
        )

    async def _download(self, urls: List[str], target: Path) -> List[Path]:
        paths = []
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
            for index, url in enumerate(urls, start=1):
                path = target / f"clip-{index:03d}.mp4"
                if url.startswith("file://"):
                    source = Path(url2pathname(urlparse(url).path))
                    if not source.exists():
                        raise ProviderError(f"Clip {index} not found at {source}", provider=self.provider_name)
                    shutil.copyfile(source, path)
                    paths.append(path)
                    continue
                try:
                    response = await client.get(url, follow_redirects=True)
                except httpx.HTTPError as e:
                    raise ProviderError(f"Failed to download clip {index}: {e}", provider=self.provider_name)
                if response.status_code != 200:
                    raise ProviderError(
                        f"Failed to download clip {index}: HTTP {response.status_code}",
                        provider=self.provider_name,
                        status_code=response.status_code,
                    )
                path.write_bytes(response.content)
                paths.append(path)
        return paths

    @staticmethod
    def build_file_list(clips: List[Path]) -> str:
        """Render the concat demuxer file list."""
        return "".join(f"file '{Path(c).absolute()}'\n" for c in clips)

    def build_command(self, list_path: Path, output: Path, request: CompileRequest) -> List[str]:
        cmd = [self.ffmpeg_bin, "-y", "-f", "concat", "-safe", "0", "-i", str(list_path)]
        if request.output_format == "mp4" and request.quality == "high":
            # Stream copy keeps the source encoding untouched
            cmd += ["-c", "copy"]
        elif request.output_format == "webm":
            cmd += ["-c:v", "libvpx-vp9", "-crf", str(QUALITY_CRF[request.quality] + 12), "-b:v", "0", "-c:a", "libopus"]
        else:
            cmd += ["-c:v", "libx264", "-crf", str(QUALITY_CRF[request.quality]), "-c:a", "aac"]
        cmd.append(str(output))
        return cmd

    def _run(self, cmd: List[str]) -> None:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProviderError(f"ffmpeg failed to run: {e}", provider=self.provider_name)
        if result.returncode != 0:
            raise ProviderError(
                "ffmpeg concatenation failed",
                provider=self.provider_name,
                response_body=result.stderr,
            )

    def _get_video_duration(self, video_path: Path) -> Optional[float]:
        """Get the duration of a video in seconds."""
        try:
            result = subprocess.run(
                [
                    self.ffprobe_bin, "-v", "error",
                    "-show_entries", "format=duration",
                    "-of", "default=noprint_wrappers=1:nokey=1",
                    str(video_path),
                ],
                capture_output=True,
                text=True,
                timeout=30,
            )
            return float(result.stdout.strip())
        except (OSError, ValueError, subprocess.TimeoutExpired):
            logger.warning(f"Could not read duration of {video_path}")
            return None
