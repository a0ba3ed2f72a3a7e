"""Cloud image artifact model."""

from datetime import date
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ImageArtifact(BaseModel):
    """A distribution cloud image cached on the hypervisor host."""
    model_config = ConfigDict(frozen=True)

    distribution: str
    version: str
    url: str = Field(..., description="Download URL")
    path: Path = Field(..., description="Location in the image cache")

    @staticmethod
    def cache_filename(distribution: str, version: str, day: Optional[date] = None) -> str:
        """Date-stamped cache key, e.g. ubuntu-22.04-20240115.qcow2."""
        day = day or date.today()
        return f"{distribution}-{version}-{day.strftime('%Y%m%d')}.qcow2"
