"""Cloud SQL instances."""

from typing import Any, Dict

from resourcemanager import Project
from resources.base import ResourceMetadataProvider, external_name


class SQLInstanceMetadataProvider(ResourceMetadataProvider):
    """Metadata provider for SQLInstance resources."""

    @property
    def api_version(self) -> str:
        return "sql.cnrm.cloud.google.com/v1beta1"

    @property
    def kind(self) -> str:
        return "SQLInstance"

    def get_resource_location(self, resource: Dict[str, Any]) -> str:
        return (resource.get("spec") or {}).get("region") or ""

    def get_resource_id(self, project: Project, resource: Dict[str, Any]) -> str:
        return (
            f"//sqladmin.googleapis.com/projects/{project.project_id}"
            f"/instances/{external_name(resource)}"
        )
