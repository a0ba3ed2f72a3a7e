"""Tests for ImageProvider."""

from datetime import date

import httpx
import pytest

from cloudstamp.engine.catalog import default_catalog
from cloudstamp.exceptions import TransportError
from cloudstamp.providers.base import ProviderStatus
from cloudstamp.providers.image import ImageProvider


@pytest.fixture
def requests():
    return []


@pytest.fixture
def provider(tmp_path, requests):
    def handler(request):
        requests.append(request)
        if request.url.path.endswith("missing.img"):
            return httpx.Response(404)
        if request.url.host == "unreachable.example":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"image-bytes")

    image = ImageProvider(transport=httpx.MockTransport(handler))
    image.cache_dir = tmp_path / "cache"
    return image


@pytest.fixture
def artifact(provider):
    return provider.artifact(default_catalog().resolve("debian"), "12", date(2024, 3, 1))


class TestImageProvider:
    """Test ImageProvider."""

    @pytest.mark.asyncio
    async def test_initialize(self, stamp_config, tmp_path):
        """Test the cache directory comes from configuration."""
        image = ImageProvider()

        await image.initialize(stamp_config)

        assert image.cache_dir == tmp_path / "cache"

    def test_artifact(self, artifact, tmp_path):
        """Test artifacts carry the download URL and cache path."""
        assert artifact.distribution == "debian"
        assert artifact.url.endswith("debian-12-genericcloud-amd64.qcow2")
        assert artifact.path == tmp_path / "cache" / "debian-12-20240301.qcow2"

    @pytest.mark.asyncio
    async def test_status(self, provider, artifact):
        """Test empty files do not count as cached."""
        assert await provider.status(artifact) == ProviderStatus.ABSENT

        artifact.path.parent.mkdir(parents=True)
        artifact.path.write_bytes(b"")
        assert await provider.status(artifact) == ProviderStatus.ABSENT

        artifact.path.write_bytes(b"data")
        assert await provider.status(artifact) == ProviderStatus.PRESENT

    @pytest.mark.asyncio
    async def test_present_downloads(self, provider, artifact, requests):
        """Test a missing image is downloaded into the cache."""
        path = await provider.present(artifact)

        assert path == artifact.path
        assert path.read_bytes() == b"image-bytes"
        assert len(requests) == 1
        assert not path.with_name(path.name + ".part").exists()

    @pytest.mark.asyncio
    async def test_present_uses_cache(self, provider, artifact, requests):
        """Test a cached image is not downloaded again."""
        artifact.path.parent.mkdir(parents=True)
        artifact.path.write_bytes(b"cached")

        await provider.present(artifact)

        assert requests == []
        assert artifact.path.read_bytes() == b"cached"

    @pytest.mark.asyncio
    async def test_http_error(self, provider, artifact, tmp_path):
        """Test HTTP errors become transport errors without partial files."""
        missing = artifact.model_copy(update={"url": "https://images.example/missing.img"})

        with pytest.raises(TransportError) as exc_info:
            await provider.present(missing)

        assert exc_info.value.reason == "HTTP 404"
        assert exc_info.value.url == "https://images.example/missing.img"
        assert list((tmp_path / "cache").iterdir()) == []

    @pytest.mark.asyncio
    async def test_connection_error(self, provider, artifact, tmp_path):
        """Test network failures become transport errors."""
        unreachable = artifact.model_copy(update={"url": "https://unreachable.example/image.qcow2"})

        with pytest.raises(TransportError) as exc_info:
            await provider.present(unreachable)

        assert "connection refused" in exc_info.value.reason
        assert list((tmp_path / "cache").iterdir()) == []

    @pytest.mark.asyncio
    async def test_absent(self, provider, artifact):
        """Test removing a cached image."""
        artifact.path.parent.mkdir(parents=True)
        artifact.path.write_bytes(b"cached")

        await provider.absent(artifact)
        await provider.absent(artifact)

        assert not artifact.path.exists()
