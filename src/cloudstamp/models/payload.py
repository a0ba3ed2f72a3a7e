"""Compiled cloud-init payload models."""

import re
from typing import Any, Dict, Literal
from pydantic import BaseModel, ConfigDict, Field


# storage:snippets/filename
SNIPPET_REF_RE = re.compile(r"^(?P<storage>[A-Za-z0-9][A-Za-z0-9_.-]*):(?P<path>snippets/[^/\s]+)$")


class SnippetRef(BaseModel):
    """Reference to a file in a storage pool's snippet area."""
    model_config = ConfigDict(frozen=True)

    storage_id: str
    path: str = Field(..., description="Path rooted at snippets/")

    @property
    def filename(self) -> str:
        return self.path.split("/", 1)[1]

    @classmethod
    def parse(cls, value: str) -> "SnippetRef":
        """Parse a ``storage:snippets/filename`` reference."""
        match = SNIPPET_REF_RE.match(value.strip())
        if not match:
            raise ValueError(
                f"Invalid snippet reference '{value}'. Expected 'storage:snippets/filename.yaml'"
            )
        return cls(storage_id=match.group("storage"), path=match.group("path"))

    def __str__(self) -> str:
        return f"{self.storage_id}:{self.path}"


class CompiledCloudInitPayload(BaseModel):
    """The single cloud-init artifact handed to the orchestrator."""
    model_config = ConfigDict(frozen=True)

    reference: SnippetRef
    slot: Literal["user", "vendor"] = "user"
    ephemeral: bool = False
    properties: Dict[str, Any] = Field(
        default_factory=dict,
        description="Hypervisor cloud-init properties (ciuser, sshkeys, ipconfig0, ...)",
    )

    @property
    def cicustom(self) -> str:
        return f"{self.slot}={self.reference}"


class SnippetFile(BaseModel):
    """Payload content waiting to be written into a snippet area."""
    model_config = ConfigDict(frozen=True)

    filename: str
    content: str
