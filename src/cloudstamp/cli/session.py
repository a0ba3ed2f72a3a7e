"""Wiring of configuration, providers and engine components for the CLI."""

import asyncio
from pathlib import Path
from typing import Any, Optional

from cloudstamp.engine.catalog import DistributionCatalog, default_catalog
from cloudstamp.engine.compiler import PayloadCompiler
from cloudstamp.engine.config import ConfigManager
from cloudstamp.engine.orchestrator import Orchestrator
from cloudstamp.engine.registry import TemplateRegistry
from cloudstamp.engine.selftest import TemplateSelfTest
from cloudstamp.engine.validator import ValidationResult, validate
from cloudstamp.models.config import StampConfig
from cloudstamp.providers.registry import ProviderRegistry
from cloudstamp.utils.logging import setup_logging
from cloudstamp.utils.proxmox import ProxmoxCLI


class Session:
    """One CLI invocation's view of the engine."""

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        log_level: Optional[str] = None,
        hypervisor: Optional[ProxmoxCLI] = None,
        catalog: Optional[DistributionCatalog] = None,
    ):
        """Initialize CLI session."""
        self.manager = ConfigManager(config_dir)
        self.log_level = log_level
        self.catalog = catalog or default_catalog()
        self.providers = ProviderRegistry(hypervisor)
        self.config: Optional[StampConfig] = None

    async def open(self):
        """Load configuration and initialize providers."""
        self.config = await self.manager.load()
        setup_logging(self.log_level or self.config.general.log_level)
        await self.providers.initialize(self.config)

    def run(self, coro) -> Any:
        """Run an engine coroutine to completion."""
        return asyncio.run(coro)

    def validate(self, raw: Any) -> ValidationResult:
        return validate(
            raw,
            catalog=self.catalog,
            script_templates=self.manager.scripts.keys(),
            min_password_length=self.config.cloud_init.min_password_length,
        )

    def orchestrator(self) -> Orchestrator:
        compiler = PayloadCompiler(
            scripts=self.manager.scripts,
            agent_package=self.config.cloud_init.agent_package,
            default_nameservers=self.config.cloud_init.default_nameservers,
        )
        return Orchestrator(self.config, self.providers, catalog=self.catalog, compiler=compiler)

    def registry(self) -> TemplateRegistry:
        return TemplateRegistry(
            self.providers.hypervisor,
            Path(self.config.general.export_dir),
            proxmox=self.config.proxmox,
        )

    def self_test(self) -> TemplateSelfTest:
        return TemplateSelfTest(self.providers.hypervisor, self.config.self_test)
