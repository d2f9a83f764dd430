"""
Taggable Resource Reconciler - keeps tag bindings in line with resource labels.

One reconciler instance handles one resource kind. For every matched label
of a resource it makes sure exactly one TagsLocationTagBinding exists, and
removes the bindings whose label went away. A finalizer on the resource makes
sure its bindings are cleaned up before the resource itself disappears.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bindings import (
    TAG_BINDING_API_VERSION,
    TAG_BINDING_KIND,
    TAG_BINDING_OWNER_KEY,
    build_tag_binding,
    owner_index_value,
    tag_binding_changed,
    tag_binding_owner_index,
    tag_binding_resource_name,
)
from config import ControllerConfig
from labels import LabelMatcher
from objects import (
    add_finalizer,
    contains_finalizer,
    get_annotations,
    get_labels,
    get_name,
    get_namespace,
    is_being_deleted,
    remove_finalizer,
    remove_owner_reference,
)
from resourcemanager import Project
from resources.base import ResourceMetadataProvider
from store import NotFoundError, ObjectStore, ignore_not_found
from tags import TagsManager

logger = logging.getLogger(__name__)

NAMESPACE_API_VERSION = "v1"
NAMESPACE_KIND = "Namespace"


@dataclass
class Request:
    """Identifies the resource to reconcile."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ReconcileResult:
    """Result from a reconcile() call."""

    success: bool = False
    message: str = ""
    requeue_after: Optional[int] = None


def setup_tag_binding_index(store: ObjectStore, config: ControllerConfig) -> None:
    """Register the owner field index on tag bindings."""
    suffix = config.managed_api_group_suffix
    store.register_field_index(
        TAG_BINDING_API_VERSION,
        TAG_BINDING_KIND,
        TAG_BINDING_OWNER_KEY,
        lambda binding: tag_binding_owner_index(binding, suffix),
    )


class TaggableResourceReconciler:
    """
    Reconciles the tag bindings of one taggable resource kind.

    Safe to run concurrently for different resources; the hosting runtime
    must not run two passes for the same resource at once.
    """

    def __init__(
        self,
        store: ObjectStore,
        tags: TagsManager,
        provider: ResourceMetadataProvider,
        label_matcher: LabelMatcher,
        config: Optional[ControllerConfig] = None,
    ):
        self.store = store
        self.tags = tags
        self.provider = provider
        self.label_matcher = label_matcher
        self.config = config or ControllerConfig()

    @property
    def kind(self) -> str:
        return self.provider.kind

    async def reconcile(self, request: Request) -> ReconcileResult:
        """
        Reconcile the tag bindings of a single resource.

        Errors never escape: they are logged and reported as a failed result
        with a requeue delay, and the caller retries the whole pass.
        Cancellation of the calling task is propagated.
        """
        try:
            return await asyncio.wait_for(
                self._reconcile(request), timeout=self.config.reconcile_timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Reconciling {self.kind} {request} timed out after "
                f"{self.config.reconcile_timeout}s"
            )
            return ReconcileResult(
                success=False,
                message="Reconciliation timed out",
                requeue_after=self.config.retry_delay,
            )
        except Exception as e:
            logger.error(f"Error reconciling {self.kind} {request}: {e}", exc_info=True)
            return ReconcileResult(
                success=False,
                message=f"Reconciliation error: {e}",
                requeue_after=self.config.retry_delay,
            )

    async def _reconcile(self, request: Request) -> ReconcileResult:
        try:
            resource = await self.store.get(
                self.provider.api_version, self.kind, request.namespace, request.name
            )
        except NotFoundError:
            logger.debug(f"{self.kind} {request} not found, nothing to do")
            return ReconcileResult(success=True, message="Resource not found")

        if is_being_deleted(resource):
            if not contains_finalizer(resource, self.config.finalizer):
                return ReconcileResult(success=True, message="Resource is being deleted")
            return await self._finalize(resource)

        if add_finalizer(resource, self.config.finalizer):
            resource = await self.store.update(resource)
            logger.info(f"Added finalizer to {self.kind} {request}")

        project_id = await self.determine_project_id(resource)
        expected_refs = await self._expected_tag_value_refs(project_id, resource)
        project = await self.tags.get_project_info(project_id)

        bound_tags = await self.list_owned_bindings(resource)
        bound_by_name = {get_name(b): b for b in bound_tags}

        expected_names = set()
        for ref in expected_refs:
            binding = self.generate_binding(resource, project, ref)
            name = get_name(binding)
            expected_names.add(name)

            existing = bound_by_name.get(name)
            if existing is not None and not is_being_deleted(existing):
                if tag_binding_changed(
                    binding, existing, self.config.project_id_annotation
                ):
                    # Bindings are immutable, recreate instead of patching
                    logger.info(f"Recreating changed tag binding {name}")
                    await ignore_not_found(self.store.delete(existing))
                    await self.store.create(binding)
            else:
                logger.info(f"Creating tag binding {name} for {self.kind} {request}")
                await self.store.create(binding)

        # Stale bindings go only after every expected binding is in place
        for binding in bound_tags:
            name = get_name(binding)
            if name in expected_names or is_being_deleted(binding):
                continue
            logger.info(f"Deleting stale tag binding {name}")
            await ignore_not_found(self.store.delete(binding))

        return ReconcileResult(success=True, message="Tag bindings reconciled")

    async def _finalize(self, resource: Dict[str, Any]) -> ReconcileResult:
        """Clean up the bindings of a deleting resource, then release it."""
        name = f"{get_namespace(resource)}/{get_name(resource)}"
        try:
            await self._cleanup_bindings(resource)
        except Exception as e:
            logger.error(
                f"Failed to clean up tag bindings of {self.kind} {name}: {e}",
                exc_info=True,
            )
            return ReconcileResult(
                success=False,
                message=f"Failed to clean up tag bindings: {e}",
                requeue_after=self.config.cleanup_retry_delay,
            )

        remove_finalizer(resource, self.config.finalizer)
        await self.store.update(resource)
        logger.info(f"Removed finalizer from {self.kind} {name}")

        if self.config.cleanup_unused_tags:
            await self._delete_unused_tags(resource)

        return ReconcileResult(success=True, message="Tag bindings cleaned up")

    async def _cleanup_bindings(self, resource: Dict[str, Any]) -> None:
        for binding in await self.list_owned_bindings(resource):
            await self._cleanup_binding(resource, binding)

    async def _cleanup_binding(
        self, resource: Dict[str, Any], binding: Dict[str, Any]
    ) -> None:
        """
        Release one binding of a deleting resource.

        Policy 'delete' removes the binding; policy 'orphan' leaves it in
        place and only drops the owner reference to the resource.
        """
        name = get_name(binding)

        if self.config.binding_deletion_policy == "orphan":
            if remove_owner_reference(binding, resource):
                logger.info(f"Orphaning tag binding {name}")
                await ignore_not_found(self.store.update(binding))
            return

        logger.info(f"Deleting tag binding {name}")
        await ignore_not_found(self.store.delete(binding))

        if not self.config.binding_finalizers:
            return

        try:
            current = await self.store.get(
                TAG_BINDING_API_VERSION, TAG_BINDING_KIND, get_namespace(binding), name
            )
        except NotFoundError:
            return

        removed = [
            f for f in self.config.binding_finalizers if remove_finalizer(current, f)
        ]
        if removed:
            logger.info(f"Removing finalizers {removed} from tag binding {name}")
            await ignore_not_found(self.store.update(current))

    async def _delete_unused_tags(self, resource: Dict[str, Any]) -> None:
        """Best-effort removal of the tag values and keys the resource used."""
        project_id = await self.determine_project_id(resource)
        for key, value in sorted(self.label_matcher(get_labels(resource)).items()):
            await self.tags.delete_value_if_unused(project_id, key, value)
            await self.tags.delete_key_if_unused(project_id, key)

    async def _expected_tag_value_refs(
        self, project_id: str, resource: Dict[str, Any]
    ) -> List[str]:
        refs: List[str] = []
        for key, value in sorted(self.label_matcher(get_labels(resource)).items()):
            tag_value = await self.tags.lookup_value(project_id, key, value)
            if tag_value.name not in refs:
                refs.append(tag_value.name)
        return refs

    async def determine_project_id(self, resource: Dict[str, Any]) -> str:
        """
        Find the project a resource lives in.

        Precedence: the resource's project annotation, the namespace's
        project annotation, then the namespace name itself.
        """
        annotation = self.config.project_id_annotation

        project_id = get_annotations(resource).get(annotation)
        if project_id:
            return project_id

        namespace = get_namespace(resource)
        try:
            ns = await self.store.get(NAMESPACE_API_VERSION, NAMESPACE_KIND, "", namespace)
        except Exception as e:
            logger.warning(f"Unable to fetch namespace {namespace}: {e}")
            return namespace

        return get_annotations(ns).get(annotation) or namespace

    async def list_owned_bindings(
        self, resource: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """List the tag bindings controlled by a resource through the owner index."""
        owner_index = owner_index_value(
            resource.get("apiVersion") or self.provider.api_version,
            resource.get("kind") or self.kind,
            get_name(resource),
        )
        return await self.store.list(
            TAG_BINDING_API_VERSION,
            TAG_BINDING_KIND,
            namespace=get_namespace(resource),
            field_selector={TAG_BINDING_OWNER_KEY: owner_index},
        )

    def generate_binding(
        self, resource: Dict[str, Any], project: Project, tag_value_ref: str
    ) -> Dict[str, Any]:
        """Build the expected binding of a resource to one tag value."""
        return build_tag_binding(
            resource,
            name=tag_binding_resource_name(
                resource.get("kind") or self.kind, get_name(resource), tag_value_ref
            ),
            location=self.provider.get_resource_location(resource),
            parent_id=self.provider.get_resource_id(project, resource),
            tag_value_ref=tag_value_ref,
            project_id=project.project_id,
            project_id_annotation=self.config.project_id_annotation,
        )
