"""
Output Storage
==============

Durable copies of generated clips.

Provider output URLs expire after a while, so completed outputs are copied
somewhere the compile step can still read them later.

- ProviderOutputStorage: keeps the provider URL as-is
- LocalOutputStorage: downloads the output under a local media directory
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import httpx

from ..core.exceptions import ProviderError
from ..core.security import redact_api_key, sanitize_filename
from .factory import register_output_storage

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class BaseOutputStorage(ABC):
    """Abstract base class for output persistence backends."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    def persist(self, url: str, key: str) -> str:
        """
        Copy the file at ``url`` and return the URL of the copy.

        Args:
            url: Provider output URL
            key: Slash-separated storage key without extension

        Raises:
            ProviderError: If the output cannot be fetched or written
        """
        pass

    def close(self) -> None:
        return None


@register_output_storage("provider")
class ProviderOutputStorage(BaseOutputStorage):
    """No copy; units keep the provider's output URLs."""

    def __init__(self, **kwargs):
        pass

    @property
    def provider_name(self) -> str:
        return "provider"

    def persist(self, url: str, key: str) -> str:
        return url


@register_output_storage("local")
class LocalOutputStorage(BaseOutputStorage):
    """
    Downloads outputs into ``directory``.

    The returned URL is ``{public_base_url}/{key}{ext}`` when a public base
    URL is configured, otherwise a ``file://`` URL.
    """

    def __init__(
        self,
        directory: Union[str, Path] = "./output/media",
        public_base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
        **kwargs,
    ):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def provider_name(self) -> str:
        return "local-storage"

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def relative_path(self, url: str, key: str) -> Path:
        """Storage path for ``key``, keeping the extension of the source URL."""
        extension = Path(urlparse(url).path).suffix.lower() or ".bin"
        parts = [sanitize_filename(part) for part in key.split("/") if part]
        parts[-1] = parts[-1] + extension
        return Path(*parts)

    def persist(self, url: str, key: str) -> str:
        relative = self.relative_path(url, key)
        target = self.directory / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")

        logger.debug(f"Persisting {url[:60]} to {target}")

        try:
            with self._get_client().stream("GET", url) as response:
                if response.status_code != 200:
                    raise ProviderError(
                        f"Output download failed: HTTP {response.status_code}",
                        provider=self.provider_name,
                        status_code=response.status_code,
                    )
                with open(partial, "wb") as f:
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except httpx.HTTPError as e:
            partial.unlink(missing_ok=True)
            raise ProviderError(
                f"Output download failed: {redact_api_key(str(e))}",
                provider=self.provider_name,
                recoverable=True,
            )
        except ProviderError:
            partial.unlink(missing_ok=True)
            raise

        partial.replace(target)
        logger.info(f"Stored output {relative.as_posix()} ({target.stat().st_size} bytes)")

        if self.public_base_url:
            return f"{self.public_base_url}/{relative.as_posix()}"
        return target.resolve().as_uri()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
