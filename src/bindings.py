"""
Tag binding identity and comparison.

Pure functions computing the deterministic name of a TagsLocationTagBinding,
the owner index used to list the bindings of one resource, and whether an
existing binding still matches the expected one.
"""

from typing import Any, Dict, List

from objects import get_controller_of, set_controller_reference

TAG_BINDING_API_VERSION = "tags.cnrm.cloud.google.com/v1beta1"
TAG_BINDING_KIND = "TagsLocationTagBinding"

# Field index key for listing bindings by their controlling owner
TAG_BINDING_OWNER_KEY = ".metadata.controller"

MAX_NAME_LENGTH = 253
TAG_VALUE_PREFIX = "tagValues/"


def owner_index_value(api_version: str, kind: str, name: str) -> str:
    """Index value identifying an owner: '<apiVersion>/<kind>/<name>'."""
    return f"{api_version}/{kind}/{name}"


def tag_binding_resource_name(kind: str, owner_name: str, value_ref: str) -> str:
    """
    Compute the binding name for an owner and a tag value.

    The name is '<kind>-<owner>-<valueID>'. When it would exceed the object
    name limit, the '<kind>-<owner>' part is cut from the right so the tag
    value suffix always survives intact.
    """
    prefix = f"{kind.lower()}-{owner_name}"
    value_id = value_ref
    if value_id.startswith(TAG_VALUE_PREFIX):
        value_id = value_id[len(TAG_VALUE_PREFIX) :]
    suffix = f"-{value_id}"

    max_prefix_len = MAX_NAME_LENGTH - len(suffix)
    if len(prefix) > max_prefix_len:
        prefix = prefix[: max(max_prefix_len, 0)]

    return prefix + suffix


def tag_binding_changed(
    expected: Dict[str, Any],
    actual: Dict[str, Any],
    project_id_annotation: str,
) -> bool:
    """
    Check whether an existing binding differs from the expected one.

    Bindings are immutable, so any difference in tag value, parent,
    location or project annotation means the binding must be recreated.
    """
    expected_spec = expected.get("spec") or {}
    actual_spec = actual.get("spec") or {}

    if (expected_spec.get("tagValueRef") or {}) != (actual_spec.get("tagValueRef") or {}):
        return True

    if (expected_spec.get("parentRef") or {}) != (actual_spec.get("parentRef") or {}):
        return True

    if expected_spec.get("location", "") != actual_spec.get("location", ""):
        return True

    expected_annotations = expected.get("metadata", {}).get("annotations") or {}
    actual_annotations = actual.get("metadata", {}).get("annotations") or {}
    if expected_annotations.get(project_id_annotation, "") != actual_annotations.get(
        project_id_annotation, ""
    ):
        return True

    return False


def tag_binding_owner_index(binding: Dict[str, Any], api_group_suffix: str) -> List[str]:
    """
    Field indexer for tag bindings.

    Returns the owner index value of the binding's controller when that
    controller is one of the managed resource types, otherwise nothing.
    """
    owner = get_controller_of(binding)
    if owner is None:
        return []

    if api_group_suffix not in owner.get("apiVersion", ""):
        return []

    return [
        owner_index_value(
            owner.get("apiVersion", ""), owner.get("kind", ""), owner.get("name", "")
        )
    ]


def build_tag_binding(
    owner: Dict[str, Any],
    *,
    name: str,
    location: str,
    parent_id: str,
    tag_value_ref: str,
    project_id: str,
    project_id_annotation: str,
) -> Dict[str, Any]:
    """Build the binding manifest tying owner to one tag value."""
    binding = {
        "apiVersion": TAG_BINDING_API_VERSION,
        "kind": TAG_BINDING_KIND,
        "metadata": {
            "name": name,
            "namespace": owner.get("metadata", {}).get("namespace", ""),
            "annotations": {project_id_annotation: project_id},
        },
        "spec": {
            "location": location,
            "parentRef": {"external": parent_id},
            "tagValueRef": {"external": tag_value_ref},
        },
    }
    set_controller_reference(owner, binding)
    return binding
