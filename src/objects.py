"""
Helpers for Kubernetes-shaped object manifests.

Objects are plain dicts with apiVersion, kind, metadata and spec keys,
the same shape the API server and Config Connector use.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Return the metadata dict of an object, creating it if missing."""
    return obj.setdefault("metadata", {})


def get_name(obj: Dict[str, Any]) -> str:
    return obj.get("metadata", {}).get("name", "")


def get_namespace(obj: Dict[str, Any]) -> str:
    return obj.get("metadata", {}).get("namespace", "") or ""


def get_labels(obj: Dict[str, Any]) -> Dict[str, str]:
    return dict(obj.get("metadata", {}).get("labels") or {})


def get_annotations(obj: Dict[str, Any]) -> Dict[str, str]:
    return dict(obj.get("metadata", {}).get("annotations") or {})


def is_being_deleted(obj: Dict[str, Any]) -> bool:
    """True once a deletion has been requested for the object."""
    return bool(obj.get("metadata", {}).get("deletionTimestamp"))


def mark_deleted(obj: Dict[str, Any]) -> None:
    """Set the deletion marker if it is not already set."""
    meta = metadata(obj)
    if not meta.get("deletionTimestamp"):
        meta["deletionTimestamp"] = (
            datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        )


# ==================== Finalizers ====================


def get_finalizers(obj: Dict[str, Any]) -> List[str]:
    return list(obj.get("metadata", {}).get("finalizers") or [])


def contains_finalizer(obj: Dict[str, Any], finalizer: str) -> bool:
    return finalizer in get_finalizers(obj)


def add_finalizer(obj: Dict[str, Any], finalizer: str) -> bool:
    """
    Add a finalizer to an object in place.

    Returns:
        True if the finalizer list was changed.
    """
    finalizers = get_finalizers(obj)
    if finalizer in finalizers:
        return False
    finalizers.append(finalizer)
    metadata(obj)["finalizers"] = finalizers
    return True


def remove_finalizer(obj: Dict[str, Any], finalizer: str) -> bool:
    """
    Remove a finalizer from an object in place.

    Returns:
        True if the finalizer list was changed.
    """
    finalizers = get_finalizers(obj)
    if finalizer not in finalizers:
        return False
    metadata(obj)["finalizers"] = [f for f in finalizers if f != finalizer]
    return True


# ==================== Owner references ====================


def owner_reference(owner: Dict[str, Any], controller: bool = True) -> Dict[str, Any]:
    """Build an owner reference pointing at the given object."""
    ref = {
        "apiVersion": owner.get("apiVersion", ""),
        "kind": owner.get("kind", ""),
        "name": get_name(owner),
        "controller": controller,
        "blockOwnerDeletion": True,
    }
    uid = owner.get("metadata", {}).get("uid")
    if uid:
        ref["uid"] = uid
    return ref


def set_controller_reference(owner: Dict[str, Any], obj: Dict[str, Any]) -> None:
    """
    Make owner the controller of obj.

    Cluster-scoped owners cannot own namespaced objects across namespaces, so
    both objects must live in the same namespace.

    Raises:
        ValueError: If obj already has a different controller or the
            namespaces differ.
    """
    if get_namespace(owner) and get_namespace(owner) != get_namespace(obj):
        raise ValueError(
            f"Cross-namespace owner references are not allowed: owner "
            f"{get_namespace(owner)}/{get_name(owner)} and object "
            f"{get_namespace(obj)}/{get_name(obj)}"
        )

    new_ref = owner_reference(owner, controller=True)
    existing = get_controller_of(obj)
    if existing is not None and not _same_owner(existing, new_ref):
        raise ValueError(
            f"Object {get_name(obj)} is already owned by another controller "
            f"{existing.get('kind')}/{existing.get('name')}"
        )

    refs = [r for r in get_owner_references(obj) if not _same_owner(r, new_ref)]
    refs.append(new_ref)
    metadata(obj)["ownerReferences"] = refs


def get_owner_references(obj: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(obj.get("metadata", {}).get("ownerReferences") or [])


def get_controller_of(obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the owner reference flagged as controller, if any."""
    for ref in get_owner_references(obj):
        if ref.get("controller"):
            return ref
    return None


def remove_owner_reference(obj: Dict[str, Any], owner: Dict[str, Any]) -> bool:
    """
    Strip every owner reference to owner from obj in place.

    Returns:
        True if at least one reference was removed.
    """
    target = owner_reference(owner)
    refs = get_owner_references(obj)
    kept = [r for r in refs if not _same_owner(r, target)]
    if len(kept) == len(refs):
        return False
    metadata(obj)["ownerReferences"] = kept
    return True


def _same_owner(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    if a.get("uid") and b.get("uid"):
        return a["uid"] == b["uid"]
    return (
        _api_group(a.get("apiVersion", "")) == _api_group(b.get("apiVersion", ""))
        and a.get("kind") == b.get("kind")
        and a.get("name") == b.get("name")
    )


def _api_group(api_version: str) -> str:
    return api_version.split("/")[0] if "/" in api_version else ""
