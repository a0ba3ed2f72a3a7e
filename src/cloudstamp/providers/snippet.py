"""Snippet provider for cloud-init payload files."""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from cloudstamp.exceptions import HypervisorOperationError, PayloadUploadFailed
from cloudstamp.models.payload import SnippetFile, SnippetRef
from cloudstamp.providers.base import BaseProvider, ProviderStatus


logger = logging.getLogger(__name__)


class SnippetProvider(BaseProvider):
    """Provider for files in a directory storage's snippet area."""

    def __init__(self):
        """Initialize snippet provider."""
        self.storage_id: Optional[str] = None
        self.hypervisor = None
        self._paths: Dict[str, Path] = {}

    async def initialize(self, config, registry=None):
        """Initialize provider with configuration."""
        self.storage_id = config.storage.snippet_storage
        if registry is not None:
            self.hypervisor = registry.hypervisor

    async def _snippet_dir(self, storage_id: str) -> Path:
        """Resolve and cache the snippets directory of a storage."""
        if storage_id not in self._paths:
            root = await self.hypervisor.storage_path(storage_id)
            self._paths[storage_id] = root / "snippets"
        return self._paths[storage_id]

    async def _file_path(self, ref: SnippetRef) -> Path:
        return await self._snippet_dir(ref.storage_id) / ref.filename

    def reference(self, filename: str) -> SnippetRef:
        """Reference a file in the configured snippet storage."""
        return SnippetRef(storage_id=self.storage_id, path=f"snippets/{filename}")

    async def status(self, resource: Union[SnippetRef, SnippetFile]) -> ProviderStatus:
        """Check whether a snippet file exists."""
        ref = self.reference(resource.filename) if isinstance(resource, SnippetFile) else resource
        try:
            path = await self._file_path(ref)
        except HypervisorOperationError as e:
            logger.error(f"Error resolving snippet {ref}: {e}")
            return ProviderStatus.ERROR
        return ProviderStatus.PRESENT if path.is_file() else ProviderStatus.ABSENT

    async def present(self, snippet: SnippetFile) -> SnippetRef:
        """Write a snippet file, replacing any previous content."""
        ref = self.reference(snippet.filename)
        try:
            path = await self._file_path(ref)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(snippet.content)
        except (OSError, HypervisorOperationError) as e:
            raise PayloadUploadFailed(f"could not write {ref}: {e}") from e

        logger.debug(f"Wrote snippet {ref} to {path}")
        return ref

    async def absent(self, ref: SnippetRef) -> None:
        """Remove a snippet file."""
        path = await self._file_path(ref)
        if not path.exists():
            logger.debug(f"Snippet {ref} already absent")
            return

        path.unlink()
        logger.info(f"Removed snippet {ref}")

    async def upload(self, filename: str, content: str) -> SnippetRef:
        """Upload sink entry point used by the payload compiler."""
        return await self.present(SnippetFile(filename=filename, content=content))

    async def delete(self, ref: SnippetRef) -> None:
        """Delete a previously uploaded snippet."""
        await self.absent(ref)


class DryRunSink:
    """Upload sink that names payloads without writing them."""

    def __init__(self, storage_id: str):
        """Initialize dry-run sink."""
        self.storage_id = storage_id

    async def upload(self, filename: str, content: str) -> SnippetRef:
        logger.debug(f"Dry run: would upload {filename} ({len(content)} bytes)")
        return SnippetRef(storage_id=self.storage_id, path=f"snippets/{filename}")

    async def delete(self, ref: SnippetRef) -> None:
        logger.debug(f"Dry run: would delete {ref}")
