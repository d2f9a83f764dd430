"""Cloud KMS key rings."""

from typing import Any, Dict

from resourcemanager import Project
from resources.base import ResourceMetadataProvider, external_name


class KMSKeyRingMetadataProvider(ResourceMetadataProvider):
    """Metadata provider for KMSKeyRing resources."""

    @property
    def api_version(self) -> str:
        return "kms.cnrm.cloud.google.com/v1beta1"

    @property
    def kind(self) -> str:
        return "KMSKeyRing"

    def get_resource_location(self, resource: Dict[str, Any]) -> str:
        return (resource.get("spec") or {}).get("location") or ""

    def get_resource_id(self, project: Project, resource: Dict[str, Any]) -> str:
        location = self.get_resource_location(resource)
        return (
            f"//cloudkms.googleapis.com/projects/{project.project_id}"
            f"/locations/{location}/keyRings/{external_name(resource)}"
        )
