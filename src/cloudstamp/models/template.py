"""Template specification models."""

from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, SecretStr


class DhcpNetwork(BaseModel):
    """Automatic IP configuration."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["dhcp"] = "dhcp"


class StaticNetwork(BaseModel):
    """Manual IP configuration."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["static"] = "static"
    ip: str = Field(..., description="Address in CIDR notation, e.g. 192.168.1.100/24")
    gateway: Optional[str] = None
    nameservers: List[str] = Field(default_factory=list)


NetworkMode = Annotated[Union[DhcpNetwork, StaticNetwork], Field(discriminator="mode")]


class DisabledCloudInit(BaseModel):
    """No first-boot configuration."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["disabled"] = "disabled"


class GuidedCloudInit(BaseModel):
    """First-boot configuration assembled from guided answers."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["guided"] = "guided"
    username: str = Field(..., description="Default user created on first boot")
    ssh_public_key: Optional[str] = None
    password: Optional[SecretStr] = None
    network: NetworkMode = Field(default_factory=DhcpNetwork)
    package_categories: List[str] = Field(default_factory=list)
    extra_packages: List[str] = Field(default_factory=list)
    first_boot_script: Optional[str] = Field(None, description="Commands, one per line")
    script_template: Optional[str] = Field(None, description="Named first-boot script")


class ExternalFileCloudInit(BaseModel):
    """User data already present in a storage pool's snippet area."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["external_file"] = "external_file"
    storage_id: str
    path: str = Field(..., description="Path below the storage, e.g. snippets/user-data.yaml")

    @property
    def reference(self) -> str:
        return f"{self.storage_id}:{self.path}"


class InlineCloudInit(BaseModel):
    """User data pasted by the operator."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["inline"] = "inline"
    content: str


CloudInitStrategy = Annotated[
    Union[DisabledCloudInit, GuidedCloudInit, ExternalFileCloudInit, InlineCloudInit],
    Field(discriminator="mode"),
]


class TemplateSpec(BaseModel):
    """Validated, immutable description of one template to provision."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Template name")
    distribution: str = Field(..., description="Distribution identifier")
    version: str = Field(..., description="Distribution version")
    cpu_cores: int = Field(default=2, ge=1, le=128)
    memory_mb: int = Field(default=2048, ge=512, le=131072)
    disk_gb: int = Field(default=16, ge=8, le=2048)
    tags: List[str] = Field(default_factory=list)
    cloud_init: CloudInitStrategy = Field(default_factory=DisabledCloudInit)

    @property
    def cloud_init_enabled(self) -> bool:
        return self.cloud_init.mode != "disabled"
