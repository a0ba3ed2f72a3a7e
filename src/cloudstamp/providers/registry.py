"""Provider registry for managing resource providers."""

import logging
from typing import Dict, Optional, Type

from cloudstamp.providers.base import BaseProvider
from cloudstamp.providers.image import ImageProvider
from cloudstamp.providers.snippet import SnippetProvider
from cloudstamp.utils.proxmox import ProxmoxCLI


logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry for the hypervisor boundary and resource providers."""

    def __init__(self, hypervisor: Optional[ProxmoxCLI] = None):
        """Initialize provider registry."""
        self.hypervisor = hypervisor
        self._providers: Dict[str, BaseProvider] = {}
        self._provider_classes: Dict[str, Type[BaseProvider]] = {
            "image": ImageProvider,
            "snippet": SnippetProvider,
        }

    async def initialize(self, config, providers: Optional[Dict[str, BaseProvider]] = None):
        """Initialize all providers with two-pass injection."""
        if self.hypervisor is None:
            self.hypervisor = ProxmoxCLI(config.proxmox)

        # Phase 1: Instantiate providers not supplied by the caller
        self._providers.update(providers or {})
        for name, provider_class in self._provider_classes.items():
            if name in self._providers:
                continue
            try:
                self._providers[name] = provider_class()
            except Exception as e:
                logger.error(f"Failed to instantiate provider {name}: {e}")
                raise

        # Phase 2: Initialize and inject registry
        for name, provider in self._providers.items():
            try:
                await provider.initialize(config, self)
                logger.debug(f"Initialized provider: {name}")
            except Exception as e:
                logger.error(f"Failed to initialize provider {name}: {e}")
                raise

    @property
    def image(self) -> ImageProvider:
        return self._providers["image"]

    @property
    def snippet(self) -> SnippetProvider:
        return self._providers["snippet"]
