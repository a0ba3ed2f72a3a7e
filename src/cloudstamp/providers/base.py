"""Base provider interface."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional


class ProviderStatus(Enum):
    """Managed resource status."""
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"
    ERROR = "error"


class BaseProvider(ABC):
    """Base interface for providers of run-owned resources."""

    @abstractmethod
    async def initialize(self, config: Any, registry: Optional[Any] = None):
        """Initialize the provider with configuration."""
        pass

    @abstractmethod
    async def status(self, resource: Any) -> ProviderStatus:
        """Check the current status of a resource."""
        pass

    @abstractmethod
    async def present(self, resource: Any) -> Any:
        """Ensure the resource is present."""
        pass

    @abstractmethod
    async def absent(self, resource: Any) -> None:
        """Ensure the resource is absent."""
        pass
