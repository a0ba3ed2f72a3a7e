"""
cloudstamp - Proxmox VE templates from distribution cloud images.

Resolves a distribution, validates a template specification, compiles its
cloud-init payload and drives the hypervisor through the steps that turn a
cloud image into a reusable template.
"""

__version__ = "1.0.0"

# Re-export key components for easier access
from cloudstamp.models.config import StampConfig
from cloudstamp.models.template import TemplateSpec
from cloudstamp.models.payload import CompiledCloudInitPayload

__all__ = [
    "StampConfig",
    "TemplateSpec",
    "CompiledCloudInitPayload",
]
