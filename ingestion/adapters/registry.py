"""Adapter registry mapping platforms to sync adapters."""

from typing import Dict, Type, Optional, Any
from ingestion.adapters.base import BasePlatformAdapter, FatalError


class AdapterRegistry:
    """Registry of platform adapter instances.

    Adapter classes register themselves with the ``register`` decorator;
    ``from_registered`` builds one shared instance per platform.
    """

    _adapter_classes: Dict[str, Type[BasePlatformAdapter]] = {}

    @classmethod
    def register(cls, platform: str):
        """Decorator to register an adapter class."""
        platform = getattr(platform, "value", platform)

        def decorator(adapter_class: Type[BasePlatformAdapter]):
            adapter_class.platform = platform
            cls._adapter_classes[platform] = adapter_class
            return adapter_class
        return decorator

    @classmethod
    def from_registered(cls, **adapter_kwargs: Any) -> "AdapterRegistry":
        """Instantiate every registered adapter class."""
        return cls({
            platform: adapter_class(**adapter_kwargs)
            for platform, adapter_class in cls._adapter_classes.items()
        })

    def __init__(self, adapters: Optional[Dict[str, BasePlatformAdapter]] = None):
        self._adapters: Dict[str, BasePlatformAdapter] = {
            getattr(platform, "value", platform): adapter
            for platform, adapter in (adapters or {}).items()
        }

    def get(self, platform: str) -> BasePlatformAdapter:
        """Get adapter by platform, failing fast on unknown platforms."""
        platform = getattr(platform, "value", platform)
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise FatalError(f"No sync adapter registered for platform '{platform}'")
        return adapter

    def list_platforms(self) -> list[str]:
        """List all platforms with an adapter."""
        return list(self._adapters.keys())

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
