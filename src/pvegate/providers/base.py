"""Base provider interface."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, TYPE_CHECKING
from pydantic import BaseModel

if TYPE_CHECKING:
    from pvegate.providers.registry import ProviderRegistry


class ProviderStatus(Enum):
    """Provider resource status."""
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"
    ERROR = "error"


class BaseProvider(ABC):
    """Base provider interface that all providers must implement.

    Every mutating method is check-then-apply: calling ``present`` on a
    resource that already matches its spec changes nothing.
    """

    @abstractmethod
    async def initialize(self, config: Any, registry: "ProviderRegistry"):
        """Initialize the provider with configuration and sibling providers."""
        pass

    @abstractmethod
    async def status(self, spec: BaseModel) -> ProviderStatus:
        """Check the current status of a resource."""
        pass

    @abstractmethod
    async def present(self, spec: BaseModel) -> Any:
        """Ensure the resource is present."""
        pass

    @abstractmethod
    async def absent(self, spec: BaseModel) -> None:
        """Ensure the resource is absent."""
        pass

    @abstractmethod
    async def validate_spec(self, spec: BaseModel) -> bool:
        """Validate the resource specification."""
        pass
