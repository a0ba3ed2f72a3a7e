"""Pydantic models for configuration and validation."""

from cloudstamp.models.config import (
    StampConfig,
    GeneralConfig,
    ProxmoxConfig,
    StorageConfig,
    CloudInitConfig,
    SelfTestConfig,
)
from cloudstamp.models.distribution import DistributionDescriptor
from cloudstamp.models.image import ImageArtifact
from cloudstamp.models.payload import CompiledCloudInitPayload, SnippetFile, SnippetRef
from cloudstamp.models.template import (
    TemplateSpec,
    DisabledCloudInit,
    GuidedCloudInit,
    ExternalFileCloudInit,
    InlineCloudInit,
    DhcpNetwork,
    StaticNetwork,
)

__all__ = [
    "StampConfig",
    "GeneralConfig",
    "ProxmoxConfig",
    "StorageConfig",
    "CloudInitConfig",
    "SelfTestConfig",
    "DistributionDescriptor",
    "CompiledCloudInitPayload",
    "SnippetRef",
    "SnippetFile",
    "ImageArtifact",
    "TemplateSpec",
    "DisabledCloudInit",
    "GuidedCloudInit",
    "ExternalFileCloudInit",
    "InlineCloudInit",
    "DhcpNetwork",
    "StaticNetwork",
]
