"""
PostgreSQL Object Store - asyncpg-backed implementation of ObjectStore.

Objects are stored as JSONB documents keyed by (apiVersion, kind, namespace,
name). Field index values are computed by the registered extractors on every
write and kept in a side table so indexed lists are a single index lookup.
"""

import asyncpg
import copy
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from objects import get_finalizers, get_name, get_namespace, metadata
from store import (
    AlreadyExistsError,
    ConflictError,
    FieldIndexer,
    NotFoundError,
    ObjectStore,
)

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS objects (
        id BIGSERIAL PRIMARY KEY,
        api_version VARCHAR(255) NOT NULL,
        kind VARCHAR(255) NOT NULL,
        namespace VARCHAR(253) NOT NULL DEFAULT '',
        name VARCHAR(253) NOT NULL,
        uid VARCHAR(64) NOT NULL,
        resource_version BIGINT NOT NULL DEFAULT 1,
        body JSONB NOT NULL,
        deleted_at TIMESTAMP,
        created_at TIMESTAMP NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP NOT NULL DEFAULT NOW(),
        UNIQUE (api_version, kind, namespace, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS object_field_index (
        object_id BIGINT NOT NULL REFERENCES objects(id) ON DELETE CASCADE,
        field VARCHAR(255) NOT NULL,
        value TEXT NOT NULL,
        PRIMARY KEY (object_id, field, value)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_object_field_index_lookup
        ON object_field_index (field, value)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_objects_type_namespace
        ON objects (api_version, kind, namespace)
    """,
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PostgresObjectStore(ObjectStore):
    """Object store persisting objects in PostgreSQL."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None
        self._indexers: Dict[Tuple[str, str], Dict[str, FieldIndexer]] = {}

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Create the object tables if they do not exist."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)
        logger.info("Database schema initialized")

    # ==================== Field indexes ====================

    def register_field_index(
        self, api_version: str, kind: str, field: str, extractor: FieldIndexer
    ) -> None:
        self._indexers.setdefault((api_version, kind), {})[field] = extractor
        logger.info(f"Registered field index {field} for {api_version}/{kind}")

    async def reindex(self, api_version: str, kind: str) -> int:
        """
        Recompute index entries for every stored object of a type.

        Needed once after registering an index on a non-empty store.

        Returns:
            Number of objects reindexed.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    "SELECT id, body FROM objects WHERE api_version = $1 AND kind = $2",
                    api_version,
                    kind,
                )
                for row in rows:
                    await self._write_index(
                        conn, row["id"], api_version, kind, self._parse_body(row)
                    )
        logger.info(f"Reindexed {len(rows)} {api_version}/{kind} objects")
        return len(rows)

    async def _write_index(
        self,
        conn: asyncpg.Connection,
        object_id: int,
        api_version: str,
        kind: str,
        obj: Dict[str, Any],
    ) -> None:
        indexers = self._indexers.get((api_version, kind), {})
        if not indexers:
            return

        await conn.execute(
            "DELETE FROM object_field_index WHERE object_id = $1", object_id
        )
        entries = [
            (object_id, field, value)
            for field, extractor in indexers.items()
            for value in set(extractor(obj))
        ]
        if entries:
            await conn.executemany(
                "INSERT INTO object_field_index (object_id, field, value) "
                "VALUES ($1, $2, $3)",
                entries,
            )

    # ==================== Object Methods ====================

    async def get(
        self, api_version: str, kind: str, namespace: str, name: str
    ) -> Dict[str, Any]:
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT body FROM objects
                WHERE api_version = $1 AND kind = $2
                  AND namespace = $3 AND name = $4
                """,
                api_version,
                kind,
                namespace or "",
                name,
            )
            if not row:
                raise NotFoundError(kind, namespace, name)
            return self._parse_body(row)

    async def list(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        field_selector: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        self._ensure_connected()
        query = "SELECT o.body FROM objects o WHERE o.api_version = $1 AND o.kind = $2"
        params: List[Any] = [api_version, kind]
        param_count = 2

        if namespace is not None:
            param_count += 1
            query += f" AND o.namespace = ${param_count}"
            params.append(namespace)

        indexers = self._indexers.get((api_version, kind), {})
        for field, value in (field_selector or {}).items():
            if field not in indexers:
                raise ValueError(
                    f"No field index {field!r} registered for {api_version}/{kind}"
                )
            query += (
                f" AND EXISTS (SELECT 1 FROM object_field_index i"
                f" WHERE i.object_id = o.id"
                f" AND i.field = ${param_count + 1} AND i.value = ${param_count + 2})"
            )
            params.extend([field, value])
            param_count += 2

        query += " ORDER BY o.namespace, o.name"

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
            return [self._parse_body(row) for row in rows]

    async def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_connected()
        api_version, kind = obj.get("apiVersion", ""), obj.get("kind", "")
        namespace, name = get_namespace(obj), get_name(obj)

        stored = copy.deepcopy(obj)
        meta = metadata(stored)
        meta["uid"] = meta.get("uid") or str(uuid.uuid4())
        meta["resourceVersion"] = "1"
        meta.pop("deletionTimestamp", None)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                try:
                    object_id = await conn.fetchval(
                        """
                        INSERT INTO objects
                            (api_version, kind, namespace, name, uid, body)
                        VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                        RETURNING id
                        """,
                        api_version,
                        kind,
                        namespace,
                        name,
                        meta["uid"],
                        json.dumps(stored),
                    )
                except asyncpg.UniqueViolationError:
                    raise AlreadyExistsError(kind, namespace, name)
                await self._write_index(conn, object_id, api_version, kind, stored)

        logger.debug(f"Created {kind} {namespace}/{name}")
        return stored

    async def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_connected()
        api_version, kind = obj.get("apiVersion", ""), obj.get("kind", "")
        namespace, name = get_namespace(obj), get_name(obj)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    SELECT id, uid, resource_version, deleted_at, body FROM objects
                    WHERE api_version = $1 AND kind = $2
                      AND namespace = $3 AND name = $4
                    FOR UPDATE
                    """,
                    api_version,
                    kind,
                    namespace,
                    name,
                )
                if not row:
                    raise NotFoundError(kind, namespace, name)

                submitted_version = obj.get("metadata", {}).get("resourceVersion")
                if submitted_version and str(submitted_version) != str(
                    row["resource_version"]
                ):
                    raise ConflictError(
                        f"{kind} {namespace}/{name} has been modified "
                        f"(resourceVersion {submitted_version} is stale)"
                    )

                current = self._parse_body(row)
                stored = copy.deepcopy(obj)
                meta = metadata(stored)
                meta["uid"] = row["uid"]
                deletion_timestamp = current.get("metadata", {}).get(
                    "deletionTimestamp"
                )
                if deletion_timestamp:
                    meta["deletionTimestamp"] = deletion_timestamp
                else:
                    meta.pop("deletionTimestamp", None)

                if deletion_timestamp and not get_finalizers(stored):
                    await self._remove(conn, row["id"], row["uid"])
                    logger.debug(f"Finalized and removed {kind} {namespace}/{name}")
                    return copy.deepcopy(obj)

                new_version = row["resource_version"] + 1
                meta["resourceVersion"] = str(new_version)
                await conn.execute(
                    """
                    UPDATE objects
                    SET body = $1::jsonb, resource_version = $2, updated_at = NOW()
                    WHERE id = $3
                    """,
                    json.dumps(stored),
                    new_version,
                    row["id"],
                )
                await self._write_index(conn, row["id"], api_version, kind, stored)

        return stored

    async def delete(self, obj: Dict[str, Any]) -> None:
        self._ensure_connected()
        api_version, kind = obj.get("apiVersion", ""), obj.get("kind", "")
        namespace, name = get_namespace(obj), get_name(obj)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    SELECT id, uid, resource_version, body FROM objects
                    WHERE api_version = $1 AND kind = $2
                      AND namespace = $3 AND name = $4
                    FOR UPDATE
                    """,
                    api_version,
                    kind,
                    namespace,
                    name,
                )
                if not row:
                    raise NotFoundError(kind, namespace, name)

                current = self._parse_body(row)
                if get_finalizers(current):
                    await self._mark_deleted(
                        conn, row["id"], row["resource_version"], current
                    )
                    logger.info(
                        f"Marked {kind} {namespace}/{name} for deletion, "
                        f"waiting on finalizers: {get_finalizers(current)}"
                    )
                    return

                await self._remove(conn, row["id"], row["uid"])
                logger.debug(f"Deleted {kind} {namespace}/{name}")

    # Private helper methods

    async def _mark_deleted(
        self,
        conn: asyncpg.Connection,
        object_id: int,
        resource_version: int,
        current: Dict[str, Any],
    ) -> None:
        meta = metadata(current)
        if meta.get("deletionTimestamp"):
            return
        new_version = resource_version + 1
        meta["deletionTimestamp"] = _now()
        meta["resourceVersion"] = str(new_version)
        await conn.execute(
            """
            UPDATE objects
            SET body = $1::jsonb,
                deleted_at = NOW(),
                resource_version = $2,
                updated_at = NOW()
            WHERE id = $3
            """,
            json.dumps(current),
            new_version,
            object_id,
        )

    async def _remove(self, conn: asyncpg.Connection, object_id: int, uid: str) -> None:
        """Hard-delete an object, then delete objects it owned."""
        await conn.execute("DELETE FROM objects WHERE id = $1", object_id)

        dependents = await conn.fetch(
            """
            SELECT id, uid, resource_version, body FROM objects
            WHERE body -> 'metadata' -> 'ownerReferences'
                  @> jsonb_build_array(jsonb_build_object('uid', $1::text))
            """,
            uid,
        )
        for row in dependents:
            dependent = self._parse_body(row)
            if get_finalizers(dependent):
                await self._mark_deleted(
                    conn, row["id"], row["resource_version"], dependent
                )
            else:
                await self._remove(conn, row["id"], row["uid"])

    def _parse_body(self, row: asyncpg.Record) -> Dict[str, Any]:
        """Convert a JSONB body column into a dict."""
        body = row["body"]
        return json.loads(body) if isinstance(body, str) else dict(body or {})
