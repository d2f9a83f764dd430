"""
Resource Metadata Provider - Abstract interface for taggable resource kinds.

A provider describes one Config Connector kind: which apiVersion/kind it
handles, where its resources live, and how to build the full resource name
the tags API expects as a binding parent.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from resourcemanager import Project


class ResourceMetadataProvider(ABC):
    """
    Abstract base class for resource metadata providers.

    One provider is registered per taggable kind and handed to the
    reconciler for that kind at startup.
    """

    @property
    @abstractmethod
    def api_version(self) -> str:
        """apiVersion of the handled kind (e.g. 'storage.cnrm.cloud.google.com/v1beta1')."""
        pass

    @property
    @abstractmethod
    def kind(self) -> str:
        """Kind name (e.g. 'StorageBucket')."""
        pass

    @abstractmethod
    def get_resource_location(self, resource: Dict[str, Any]) -> str:
        """
        Get the location the tag binding must be created in.

        Args:
            resource: The resource manifest

        Returns:
            A region, multi-region or zone string.
        """
        pass

    @abstractmethod
    def get_resource_id(self, project: Project, resource: Dict[str, Any]) -> str:
        """
        Get the full resource name used as the binding parent.

        Args:
            project: Metadata of the project owning the resource
            resource: The resource manifest

        Returns:
            A name like '//storage.googleapis.com/projects/_/buckets/x'.
        """
        pass


def external_name(resource: Dict[str, Any]) -> str:
    """Name of the cloud resource: spec.resourceID if set, else metadata.name."""
    resource_id = (resource.get("spec") or {}).get("resourceID")
    if resource_id:
        return resource_id
    return resource.get("metadata", {}).get("name", "")
