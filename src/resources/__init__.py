"""
Taggable resource kinds.

Each module provides the metadata provider for one Config Connector kind.
"""

from resources.base import ResourceMetadataProvider, external_name
from resources.kms import KMSKeyRingMetadataProvider
from resources.redis import RedisInstanceMetadataProvider
from resources.registry import (
    ResourceRegistry,
    get_registry,
    register_builtin_providers,
    reset_registry,
)
from resources.sql import SQLInstanceMetadataProvider
from resources.storage import StorageBucketMetadataProvider

__all__ = [
    "ResourceMetadataProvider",
    "external_name",
    "KMSKeyRingMetadataProvider",
    "RedisInstanceMetadataProvider",
    "SQLInstanceMetadataProvider",
    "StorageBucketMetadataProvider",
    "ResourceRegistry",
    "get_registry",
    "register_builtin_providers",
    "reset_registry",
]
