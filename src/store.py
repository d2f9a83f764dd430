"""
Object Store - Abstract interface for the object API the reconciler talks to.

The store behaves like the Kubernetes API server: objects are addressed by
(apiVersion, kind, namespace, name), deleting an object that still carries
finalizers only marks it for deletion, and field indexes allow listing by a
derived value (for example, the owner of a tag binding) without scanning
every object.
"""

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from objects import (
    get_finalizers,
    get_name,
    get_namespace,
    get_owner_references,
    is_being_deleted,
    mark_deleted,
    metadata,
)

logger = logging.getLogger(__name__)

FieldIndexer = Callable[[Dict[str, Any]], List[str]]


class StoreError(Exception):
    """Base class for object store errors."""


class NotFoundError(StoreError):
    """Raised when an object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {location} not found")


class AlreadyExistsError(StoreError):
    """Raised when creating an object whose name is already taken."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {location} already exists")


class ConflictError(StoreError):
    """Raised when an update is based on a stale resourceVersion."""


async def ignore_not_found(awaitable: Awaitable[Any]) -> Optional[Any]:
    """Await a store call, treating a missing object as success."""
    try:
        return await awaitable
    except NotFoundError:
        return None


class ObjectStore(ABC):
    """
    Abstract base class for object stores.

    Implementations must apply finalizer-aware deletion: delete() on an
    object with finalizers sets metadata.deletionTimestamp, and an update()
    that empties the finalizers of a deleting object removes it.
    """

    @abstractmethod
    def register_field_index(
        self, api_version: str, kind: str, field: str, extractor: FieldIndexer
    ) -> None:
        """
        Register a field index for a type.

        Args:
            api_version: apiVersion of the indexed type
            kind: Kind of the indexed type
            field: Index name used in list(field_selector=...)
            extractor: Function returning the index values of an object
        """
        pass

    @abstractmethod
    async def get(
        self, api_version: str, kind: str, namespace: str, name: str
    ) -> Dict[str, Any]:
        """
        Get an object.

        Raises:
            NotFoundError: If the object does not exist.
        """
        pass

    @abstractmethod
    async def list(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        field_selector: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        List objects of a type.

        Args:
            api_version: apiVersion of the listed type
            kind: Kind of the listed type
            namespace: Restrict to one namespace (None = all namespaces)
            field_selector: Registered index name to required value

        Raises:
            ValueError: If a field selector names an unregistered index.
        """
        pass

    @abstractmethod
    async def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an object and return the stored copy.

        Raises:
            AlreadyExistsError: If the name is taken.
        """
        pass

    @abstractmethod
    async def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace an object and return the stored copy.

        Returns the submitted object unchanged if the update completed a
        pending deletion.

        Raises:
            NotFoundError: If the object does not exist.
            ConflictError: If obj carries a stale resourceVersion.
        """
        pass

    @abstractmethod
    async def delete(self, obj: Dict[str, Any]) -> None:
        """
        Request deletion of an object.

        Raises:
            NotFoundError: If the object does not exist.
        """
        pass


TypeKey = Tuple[str, str]
ObjectKey = Tuple[str, str]


class InMemoryObjectStore(ObjectStore):
    """
    Dict-backed object store.

    Keeps registered field indexes up to date on every write so that
    indexed lists only touch matching objects. Dependents of a removed
    object (by owner uid) are deleted in turn, mirroring the API server's
    garbage collector.
    """

    def __init__(self):
        self._objects: Dict[TypeKey, Dict[ObjectKey, Dict[str, Any]]] = {}
        self._indexers: Dict[TypeKey, Dict[str, FieldIndexer]] = {}
        # (type, field) -> index value -> object keys
        self._indexes: Dict[Tuple[TypeKey, str], Dict[str, Set[ObjectKey]]] = {}
        self._resource_version = 0

    def register_field_index(
        self, api_version: str, kind: str, field: str, extractor: FieldIndexer
    ) -> None:
        type_key = (api_version, kind)
        self._indexers.setdefault(type_key, {})[field] = extractor
        index: Dict[str, Set[ObjectKey]] = {}
        for key, obj in self._objects.get(type_key, {}).items():
            for value in extractor(obj):
                index.setdefault(value, set()).add(key)
        self._indexes[(type_key, field)] = index
        logger.debug(f"Registered field index {field} for {api_version}/{kind}")

    async def get(
        self, api_version: str, kind: str, namespace: str, name: str
    ) -> Dict[str, Any]:
        obj = self._objects.get((api_version, kind), {}).get((namespace or "", name))
        if obj is None:
            raise NotFoundError(kind, namespace, name)
        return copy.deepcopy(obj)

    async def list(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        field_selector: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        type_key = (api_version, kind)
        objects = self._objects.get(type_key, {})

        if field_selector:
            keys: Optional[Set[ObjectKey]] = None
            for field, value in field_selector.items():
                index = self._indexes.get((type_key, field))
                if index is None:
                    raise ValueError(
                        f"No field index {field!r} registered for {api_version}/{kind}"
                    )
                matched = index.get(value, set())
                keys = matched if keys is None else keys & matched
            candidates = [(k, objects[k]) for k in sorted(keys or set())]
        else:
            candidates = sorted(objects.items())

        return [
            copy.deepcopy(obj)
            for (ns, _), obj in candidates
            if namespace is None or ns == namespace
        ]

    async def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        type_key = self._type_key(obj)
        key = self._object_key(obj)
        objects = self._objects.setdefault(type_key, {})
        if key in objects:
            raise AlreadyExistsError(obj.get("kind", ""), key[0], key[1])

        stored = copy.deepcopy(obj)
        meta = metadata(stored)
        meta["uid"] = meta.get("uid") or str(uuid.uuid4())
        meta["resourceVersion"] = self._next_resource_version()
        meta.pop("deletionTimestamp", None)

        objects[key] = stored
        self._index(type_key, key, stored)
        return copy.deepcopy(stored)

    async def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        type_key = self._type_key(obj)
        key = self._object_key(obj)
        current = self._objects.get(type_key, {}).get(key)
        if current is None:
            raise NotFoundError(obj.get("kind", ""), key[0], key[1])

        submitted_version = obj.get("metadata", {}).get("resourceVersion")
        if submitted_version and submitted_version != current["metadata"].get(
            "resourceVersion"
        ):
            raise ConflictError(
                f"{obj.get('kind')} {key[0]}/{key[1]} has been modified "
                f"(resourceVersion {submitted_version} is stale)"
            )

        stored = copy.deepcopy(obj)
        meta = metadata(stored)
        meta["uid"] = current["metadata"].get("uid")
        # The deletion marker can only be set by delete()
        if is_being_deleted(current):
            meta["deletionTimestamp"] = current["metadata"]["deletionTimestamp"]
        else:
            meta.pop("deletionTimestamp", None)

        if is_being_deleted(stored) and not get_finalizers(stored):
            self._remove(type_key, key)
            return copy.deepcopy(obj)

        meta["resourceVersion"] = self._next_resource_version()
        self._unindex(type_key, key)
        self._objects[type_key][key] = stored
        self._index(type_key, key, stored)
        return copy.deepcopy(stored)

    async def delete(self, obj: Dict[str, Any]) -> None:
        type_key = self._type_key(obj)
        key = self._object_key(obj)
        current = self._objects.get(type_key, {}).get(key)
        if current is None:
            raise NotFoundError(obj.get("kind", ""), key[0], key[1])

        if get_finalizers(current):
            if not is_being_deleted(current):
                mark_deleted(current)
                current["metadata"]["resourceVersion"] = self._next_resource_version()
            return

        self._remove(type_key, key)

    # Private helper methods

    def _remove(self, type_key: TypeKey, key: ObjectKey) -> None:
        self._unindex(type_key, key)
        removed = self._objects[type_key].pop(key)
        uid = removed.get("metadata", {}).get("uid")
        if uid:
            self._collect_dependents(uid)

    def _collect_dependents(self, owner_uid: str) -> None:
        """Delete every object holding an owner reference to owner_uid."""
        dependents = [
            obj
            for objects in self._objects.values()
            for obj in objects.values()
            if any(ref.get("uid") == owner_uid for ref in get_owner_references(obj))
        ]
        for obj in dependents:
            type_key = self._type_key(obj)
            key = self._object_key(obj)
            if key not in self._objects.get(type_key, {}):
                continue
            if get_finalizers(obj):
                if not is_being_deleted(obj):
                    mark_deleted(obj)
                    obj["metadata"]["resourceVersion"] = self._next_resource_version()
            else:
                self._remove(type_key, key)

    def _index(self, type_key: TypeKey, key: ObjectKey, obj: Dict[str, Any]) -> None:
        for field, extractor in self._indexers.get(type_key, {}).items():
            index = self._indexes.setdefault((type_key, field), {})
            for value in extractor(obj):
                index.setdefault(value, set()).add(key)

    def _unindex(self, type_key: TypeKey, key: ObjectKey) -> None:
        for field in self._indexers.get(type_key, {}):
            index = self._indexes.get((type_key, field), {})
            for value in list(index):
                index[value].discard(key)
                if not index[value]:
                    del index[value]

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    @staticmethod
    def _type_key(obj: Dict[str, Any]) -> TypeKey:
        return (obj.get("apiVersion", ""), obj.get("kind", ""))

    @staticmethod
    def _object_key(obj: Dict[str, Any]) -> ObjectKey:
        return (get_namespace(obj), get_name(obj))
