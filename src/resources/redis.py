"""Memorystore for Redis instances."""

from typing import Any, Dict

from resourcemanager import Project
from resources.base import ResourceMetadataProvider, external_name


class RedisInstanceMetadataProvider(ResourceMetadataProvider):
    """Metadata provider for RedisInstance resources."""

    @property
    def api_version(self) -> str:
        return "redis.cnrm.cloud.google.com/v1beta1"

    @property
    def kind(self) -> str:
        return "RedisInstance"

    def get_resource_location(self, resource: Dict[str, Any]) -> str:
        return (resource.get("spec") or {}).get("region") or ""

    def get_resource_id(self, project: Project, resource: Dict[str, Any]) -> str:
        # Redis resource names use the project number, not the project id
        region = self.get_resource_location(resource)
        return (
            f"//redis.googleapis.com/projects/{project.project_number}"
            f"/locations/{region}/instances/{external_name(resource)}"
        )
