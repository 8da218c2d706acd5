"""Resource providers for pvegate."""

from pvegate.providers.base import BaseProvider, ProviderStatus
from pvegate.providers.registry import ProviderRegistry

__all__ = [
    "BaseProvider",
    "ProviderStatus",
    "ProviderRegistry",
]
