"""Distribution descriptor models."""

from typing import Dict
from pydantic import BaseModel, ConfigDict, Field


VERSION_PLACEHOLDER = "%version%"


class DistributionDescriptor(BaseModel):
    """Static description of a downloadable cloud image family."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Distribution identifier")
    display_name: str = Field(..., description="Human readable name")
    supports_cloud_init: bool = Field(default=True)
    url_template: str = Field(..., description=f"Image URL with a {VERSION_PLACEHOLDER} placeholder")
    versions: Dict[str, str] = Field(default_factory=dict, description="Legal versions and their labels")
    url_overrides: Dict[str, str] = Field(default_factory=dict, description="Fixed URLs for specific versions")
