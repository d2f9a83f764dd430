"""
Resource Registry - Registration of taggable resource kinds.

Maps each kind name to the metadata provider describing it. Built-in kinds
are registered explicitly; additional providers are discovered through the
'tagging_operator.providers' entry point group.
"""

import logging
from importlib.metadata import entry_points
from typing import Dict, List, Optional, Type

from resources.base import ResourceMetadataProvider

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "tagging_operator.providers"


class ResourceRegistry:
    """Central registry of taggable resource kinds."""

    def __init__(self):
        self._providers: Dict[str, ResourceMetadataProvider] = {}

    def register_provider(self, provider_class: Type[ResourceMetadataProvider]) -> None:
        """
        Register a metadata provider class.

        Args:
            provider_class: The ResourceMetadataProvider subclass to register
        """
        provider = provider_class()
        kind = provider.kind

        if kind in self._providers:
            logger.warning(f"Overwriting existing provider for kind: {kind}")

        self._providers[kind] = provider
        logger.info(f"Registered taggable kind: {provider.api_version}/{kind}")

    def get_provider(self, kind: str) -> ResourceMetadataProvider:
        """
        Get the provider for a kind.

        Raises:
            ValueError: If the kind is not registered
        """
        if kind not in self._providers:
            available = ", ".join(sorted(self._providers)) or "none"
            raise ValueError(
                f"Unknown resource kind: {kind}. Available kinds: {available}"
            )
        return self._providers[kind]

    def has_provider(self, kind: str) -> bool:
        """Check if a kind is registered."""
        return kind in self._providers

    def list_kinds(self) -> List[str]:
        """List all registered kind names."""
        return list(self._providers.keys())


# Global registry instance
_registry: Optional[ResourceRegistry] = None


def get_registry() -> ResourceRegistry:
    """Get the global resource registry singleton."""
    global _registry
    if _registry is None:
        _registry = ResourceRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_providers(registry: Optional[ResourceRegistry] = None) -> None:
    """
    Register the built-in taggable kinds and discover external providers
    via entry points.
    """
    from resources.kms import KMSKeyRingMetadataProvider
    from resources.redis import RedisInstanceMetadataProvider
    from resources.sql import SQLInstanceMetadataProvider
    from resources.storage import StorageBucketMetadataProvider

    registry = registry or get_registry()

    for provider_class in (
        StorageBucketMetadataProvider,
        SQLInstanceMetadataProvider,
        KMSKeyRingMetadataProvider,
        RedisInstanceMetadataProvider,
    ):
        registry.register_provider(provider_class)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register_provider(ep.load())
        except Exception as e:
            logger.warning(f"Could not load resource provider {ep.name}: {e}")
