"""Configuration models."""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class GeneralConfig(BaseModel):
    """General settings."""
    log_level: str = Field(default="INFO")
    export_dir: str = Field(default="/etc/homelab/templates")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class ProxmoxConfig(BaseModel):
    """Hypervisor settings."""
    node: str = Field(default="localhost")
    bridge: str = Field(default="vmbr0")
    os_type: str = Field(default="l26")
    scsi_controller: str = Field(default="virtio-scsi-pci")
    command_timeout: Optional[int] = Field(default=None, ge=10)


class StorageConfig(BaseModel):
    """Storage pool and image cache settings."""
    preferred_pool: str = Field(default="local-lvm")
    default_pool: str = Field(default="local-lvm")
    snippet_storage: str = Field(default="local")
    image_cache_dir: str = Field(default="/var/lib/vz/template/iso")


class CloudInitConfig(BaseModel):
    """Cloud-init defaults."""
    min_password_length: int = Field(default=12, ge=1)
    agent_package: str = Field(default="qemu-guest-agent")
    default_nameservers: List[str] = Field(default_factory=lambda: ["1.1.1.1", "8.8.8.8"])


class SelfTestConfig(BaseModel):
    """Template self-test timing."""
    boot_wait: float = Field(default=10.0, ge=0)
    attempts: int = Field(default=6, ge=1)
    interval: float = Field(default=5.0, ge=0)


class StampConfig(BaseModel):
    """Main configuration model."""
    model_config = ConfigDict(extra="ignore")

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    proxmox: ProxmoxConfig = Field(default_factory=ProxmoxConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cloud_init: CloudInitConfig = Field(default_factory=CloudInitConfig)
    self_test: SelfTestConfig = Field(default_factory=SelfTestConfig)
