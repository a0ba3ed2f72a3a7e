"""Resource providers for cloudstamp."""

from cloudstamp.providers.base import BaseProvider, ProviderStatus
from cloudstamp.providers.registry import ProviderRegistry

__all__ = [
    "BaseProvider",
    "ProviderStatus",
    "ProviderRegistry",
]
