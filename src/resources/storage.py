"""Cloud Storage buckets."""

from typing import Any, Dict

from resourcemanager import Project
from resources.base import ResourceMetadataProvider, external_name


class StorageBucketMetadataProvider(ResourceMetadataProvider):
    """Metadata provider for StorageBucket resources."""

    @property
    def api_version(self) -> str:
        return "storage.cnrm.cloud.google.com/v1beta1"

    @property
    def kind(self) -> str:
        return "StorageBucket"

    def get_resource_location(self, resource: Dict[str, Any]) -> str:
        return (resource.get("spec") or {}).get("location") or ""

    def get_resource_id(self, project: Project, resource: Dict[str, Any]) -> str:
        # Bucket names are global, the project segment is a wildcard
        return f"//storage.googleapis.com/projects/_/buckets/{external_name(resource)}"
