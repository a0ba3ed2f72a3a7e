"""Image provider for downloading and caching distribution cloud images."""

import logging
from datetime import date
from pathlib import Path
from typing import Optional

import httpx

from cloudstamp.exceptions import TransportError
from cloudstamp.engine.catalog import build_download_url
from cloudstamp.models.distribution import DistributionDescriptor
from cloudstamp.models.image import ImageArtifact
from cloudstamp.providers.base import BaseProvider, ProviderStatus


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class ImageProvider(BaseProvider):
    """Provider for cloud images kept in the host's image cache."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 60.0):
        """Initialize image provider."""
        self.cache_dir: Optional[Path] = None
        self.transport = transport
        self.timeout = timeout

    async def initialize(self, config, registry=None):
        """Initialize provider with configuration."""
        self.cache_dir = Path(config.storage.image_cache_dir)

    def artifact(self, descriptor: DistributionDescriptor, version: str,
                 day: Optional[date] = None) -> ImageArtifact:
        """Describe the cached image for a distribution version."""
        filename = ImageArtifact.cache_filename(descriptor.id, version, day)
        return ImageArtifact(
            distribution=descriptor.id,
            version=version,
            url=build_download_url(descriptor, version),
            path=self.cache_dir / filename,
        )

    async def status(self, artifact: ImageArtifact) -> ProviderStatus:
        """Check if the image is already cached."""
        try:
            if artifact.path.is_file() and artifact.path.stat().st_size > 0:
                return ProviderStatus.PRESENT
            return ProviderStatus.ABSENT
        except OSError as e:
            logger.error(f"Error checking image {artifact.path}: {e}")
            return ProviderStatus.ERROR

    async def present(self, artifact: ImageArtifact) -> Path:
        """Ensure the image is cached, downloading it when missing."""
        if await self.status(artifact) == ProviderStatus.PRESENT:
            logger.info(f"Using cached image {artifact.path}")
            return artifact.path

        logger.info(f"Downloading {artifact.url}")
        await self._download(artifact.url, artifact.path)
        logger.info(f"Image saved to {artifact.path}")
        return artifact.path

    async def absent(self, artifact: ImageArtifact) -> None:
        """Remove the image from the cache."""
        if await self.status(artifact) == ProviderStatus.ABSENT:
            logger.debug(f"Image {artifact.path} already absent")
            return

        logger.info(f"Removing cached image {artifact.path}")
        artifact.path.unlink(missing_ok=True)

    async def _download(self, url: str, destination: Path):
        """Stream url into destination; partial files never survive a failure."""
        partial = destination.with_name(destination.name + ".part")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with httpx.AsyncClient(
                transport=self.transport, follow_redirects=True, timeout=self.timeout
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(partial, "wb") as fh:
                        async for chunk in response.aiter_bytes(CHUNK_SIZE):
                            fh.write(chunk)
            partial.replace(destination)
        except httpx.HTTPStatusError as e:
            partial.unlink(missing_ok=True)
            raise TransportError(url, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, OSError) as e:
            partial.unlink(missing_ok=True)
            raise TransportError(url, str(e) or type(e).__name__) from e
