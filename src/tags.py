"""
Tags Manager - Resolves tag keys, tag values and projects with a TTL cache.

Tag keys and values are created on first use. Lookups of an entity that does
not exist yet fail with permission-denied (or not-found), which is taken as
the signal to create it. Concurrent creations of the same entity are not
serialized here; the API's own conflict handling settles them.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from resourcemanager import (
    Project,
    ResourceManagerClient,
    ResourceManagerError,
    TagKey,
    TagValue,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 300.0  # 5 minutes


def cache_key_tag_key(project_id: str, key: str) -> str:
    return f"key:{project_id}/{key}"


def cache_key_tag_value(project_id: str, key: str, value: str) -> str:
    return f"value:{project_id}/{key}/{value}"


def cache_key_project(project_id: str) -> str:
    return f"project:{project_id}"


class TTLCache:
    """
    Thread-safe cache whose entries expire a fixed time after being set.

    Expired entries are dropped lazily when they are read.
    """

    def __init__(
        self, ttl: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.monotonic
    ):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for expires_at, _ in self._entries.values() if now < expires_at)


class TagsManager:
    """
    Looks up, creates and cleans up tag keys and tag values.

    Shared by every reconciler; the cache is the only mutable state.
    """

    def __init__(
        self,
        client: ResourceManagerClient,
        cache: Optional[TTLCache] = None,
    ):
        self.client = client
        self.cache = cache or TTLCache(DEFAULT_CACHE_TTL)

    # Tag keys

    async def lookup_key(self, project_id: str, key: str) -> TagKey:
        """
        Resolve a tag key, creating it when it does not exist.

        Raises:
            ResourceManagerError: If the lookup fails for another reason.
        """
        cache_key = cache_key_tag_key(project_id, key)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            tag_key = await self.client.get_namespaced_tag_key(f"{project_id}/{key}")
        except ResourceManagerError as e:
            if e.is_absent:
                logger.info(f"Tag key {project_id}/{key} not found, creating it")
                return await self.create_key(project_id, key)
            raise

        self.cache.set(cache_key, tag_key)
        return tag_key

    async def create_key(self, project_id: str, key: str) -> TagKey:
        """Create a tag key under the project and wait until it exists."""
        operation = await self.client.create_tag_key(f"projects/{project_id}", key)
        response = await self.client.wait_operation(operation)
        tag_key = TagKey.model_validate(response)

        logger.info(f"Created tag key {tag_key.name} ({project_id}/{key})")
        self.cache.set(cache_key_tag_key(project_id, key), tag_key)
        return tag_key

    # Tag values

    async def lookup_value(self, project_id: str, key: str, value: str) -> TagValue:
        """
        Resolve a tag value, creating it (and its key) when it does not exist.

        Raises:
            ResourceManagerError: If the lookup fails for another reason.
        """
        cache_key = cache_key_tag_value(project_id, key, value)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            tag_value = await self.client.get_namespaced_tag_value(
                f"{project_id}/{key}/{value}"
            )
        except ResourceManagerError as e:
            if e.is_absent:
                logger.info(
                    f"Tag value {project_id}/{key}/{value} not found, creating it"
                )
                return await self.create_value(project_id, key, value)
            raise

        self.cache.set(cache_key, tag_value)
        return tag_value

    async def create_value(self, project_id: str, key: str, value: str) -> TagValue:
        """Create a tag value, resolving or creating its parent key first."""
        tag_key = await self.lookup_key(project_id, key)

        operation = await self.client.create_tag_value(tag_key.name, value)
        response = await self.client.wait_operation(operation)
        tag_value = TagValue.model_validate(response)

        logger.info(f"Created tag value {tag_value.name} ({project_id}/{key}/{value})")
        self.cache.set(cache_key_tag_value(project_id, key, value), tag_value)
        return tag_value

    # Projects

    async def get_project_info(self, project_id: str) -> Project:
        """
        Get project metadata, from cache when possible.

        Raises:
            ValueError: If project_id is empty.
        """
        if not project_id:
            raise ValueError("project id must not be empty")

        cache_key = cache_key_project(project_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        project = await self.client.get_project(project_id)
        self.cache.set(cache_key, project)
        return project

    # Cleanup

    async def delete_value_if_unused(self, project_id: str, key: str, value: str) -> None:
        """
        Try to delete a tag value; failures are logged and ignored.

        The API refuses to delete values that are still bound somewhere, which
        is the expected outcome while other resources carry the same label.
        """
        try:
            tag_value = await self._find_value(project_id, key, value)
            if tag_value is None:
                return
            operation = await self.client.delete_tag_value(tag_value.name)
            await self.client.wait_operation(operation)
        except Exception as e:
            logger.info(
                f"Tag value {project_id}/{key}/{value} not deleted "
                f"(probably still in use): {e}"
            )
            return
        finally:
            self.cache.delete(cache_key_tag_value(project_id, key, value))

        logger.info(f"Deleted unused tag value {project_id}/{key}/{value}")

    async def delete_key_if_unused(self, project_id: str, key: str) -> None:
        """
        Try to delete a tag key; failures are logged and ignored.

        Keys that still have values cannot be deleted.
        """
        try:
            tag_key = await self._find_key(project_id, key)
            if tag_key is None:
                return
            operation = await self.client.delete_tag_key(tag_key.name)
            await self.client.wait_operation(operation)
        except Exception as e:
            logger.info(
                f"Tag key {project_id}/{key} not deleted (probably still in use): {e}"
            )
            return
        finally:
            self.cache.delete(cache_key_tag_key(project_id, key))

        logger.info(f"Deleted unused tag key {project_id}/{key}")

    # Private helper methods

    async def _find_key(self, project_id: str, key: str) -> Optional[TagKey]:
        """Look up a tag key without creating it."""
        cached = self.cache.get(cache_key_tag_key(project_id, key))
        if cached is not None:
            return cached
        try:
            return await self.client.get_namespaced_tag_key(f"{project_id}/{key}")
        except ResourceManagerError as e:
            if e.is_absent:
                return None
            raise

    async def _find_value(
        self, project_id: str, key: str, value: str
    ) -> Optional[TagValue]:
        """Look up a tag value without creating it."""
        cached = self.cache.get(cache_key_tag_value(project_id, key, value))
        if cached is not None:
            return cached
        try:
            return await self.client.get_namespaced_tag_value(
                f"{project_id}/{key}/{value}"
            )
        except ResourceManagerError as e:
            if e.is_absent:
                return None
            raise
