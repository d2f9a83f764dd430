"""Unit tests for store.py - In-memory object store."""

import pytest

from bindings import (
    TAG_BINDING_API_VERSION,
    TAG_BINDING_KIND,
    TAG_BINDING_OWNER_KEY,
    owner_index_value,
)
from objects import set_controller_reference
from store import (
    AlreadyExistsError,
    ConflictError,
    InMemoryObjectStore,
    NotFoundError,
    ignore_not_found,
)

BUCKET_API = "storage.cnrm.cloud.google.com/v1beta1"


def make_binding(name, owner, namespace="team-a"):
    binding = {
        "apiVersion": TAG_BINDING_API_VERSION,
        "kind": TAG_BINDING_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {},
    }
    set_controller_reference(owner, binding)
    return binding


@pytest.mark.asyncio
class TestInMemoryObjectStore:
    """Tests for InMemoryObjectStore."""

    async def test_create_and_get(self, store, sample_bucket):
        """Test that created objects can be read back."""
        created = await store.create(sample_bucket)
        assert created["metadata"]["uid"]
        assert created["metadata"]["resourceVersion"] == "1"

        fetched = await store.get(BUCKET_API, "StorageBucket", "team-a", "test-bucket")
        assert fetched == created

    async def test_get_returns_copy(self, store, sample_bucket):
        """Test that mutating a read object does not affect the store."""
        await store.create(sample_bucket)
        fetched = await store.get(BUCKET_API, "StorageBucket", "team-a", "test-bucket")
        fetched["metadata"]["labels"]["env"] = "dev"

        again = await store.get(BUCKET_API, "StorageBucket", "team-a", "test-bucket")
        assert again["metadata"]["labels"]["env"] == "prod"

    async def test_get_not_found(self, store):
        """Test that a missing object raises NotFoundError."""
        with pytest.raises(NotFoundError) as exc_info:
            await store.get(BUCKET_API, "StorageBucket", "team-a", "missing")
        assert exc_info.value.name == "missing"

    async def test_create_duplicate(self, store, sample_bucket):
        """Test that a taken name raises AlreadyExistsError."""
        await store.create(sample_bucket)
        with pytest.raises(AlreadyExistsError):
            await store.create(sample_bucket)

    async def test_create_clears_deletion_marker(self, store, sample_bucket):
        """Test that new objects never start out deleting."""
        sample_bucket["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
        created = await store.create(sample_bucket)
        assert "deletionTimestamp" not in created["metadata"]

    async def test_update(self, store, sample_bucket):
        """Test replacing an object bumps its resourceVersion."""
        created = await store.create(sample_bucket)
        created["metadata"]["labels"]["env"] = "dev"
        updated = await store.update(created)
        assert updated["metadata"]["labels"]["env"] == "dev"
        assert updated["metadata"]["resourceVersion"] != created["metadata"][
            "resourceVersion"
        ]
        assert updated["metadata"]["uid"] == created["metadata"]["uid"]

    async def test_update_conflict(self, store, sample_bucket):
        """Test that a stale resourceVersion is rejected."""
        created = await store.create(sample_bucket)
        await store.update(created)
        with pytest.raises(ConflictError):
            await store.update(created)

    async def test_update_not_found(self, store, sample_bucket):
        """Test that updating a missing object raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.update(sample_bucket)

    async def test_delete_without_finalizers(self, store, sample_bucket):
        """Test that objects without finalizers are removed immediately."""
        created = await store.create(sample_bucket)
        await store.delete(created)
        with pytest.raises(NotFoundError):
            await store.get(BUCKET_API, "StorageBucket", "team-a", "test-bucket")

    async def test_delete_with_finalizers_marks(self, store, sample_bucket):
        """Test that finalizers hold the object in a deleting state."""
        sample_bucket["metadata"]["finalizers"] = ["example.com/f"]
        created = await store.create(sample_bucket)
        await store.delete(created)

        deleting = await store.get(BUCKET_API, "StorageBucket", "team-a", "test-bucket")
        assert deleting["metadata"]["deletionTimestamp"]
        assert deleting["metadata"]["resourceVersion"] != (
            created["metadata"]["resourceVersion"]
        )

    async def test_removing_last_finalizer_completes_deletion(
        self, store, sample_bucket
    ):
        """Test that emptying the finalizers of a deleting object removes it."""
        sample_bucket["metadata"]["finalizers"] = ["example.com/f"]
        created = await store.create(sample_bucket)
        await store.delete(created)

        deleting = await store.get(BUCKET_API, "StorageBucket", "team-a", "test-bucket")
        deleting["metadata"]["finalizers"] = []
        await store.update(deleting)

        with pytest.raises(NotFoundError):
            await store.get(BUCKET_API, "StorageBucket", "team-a", "test-bucket")

    async def test_update_cannot_clear_deletion_marker(self, store, sample_bucket):
        """Test that the deletion marker survives updates."""
        sample_bucket["metadata"]["finalizers"] = ["a", "b"]
        created = await store.create(sample_bucket)
        await store.delete(created)

        deleting = await store.get(BUCKET_API, "StorageBucket", "team-a", "test-bucket")
        del deleting["metadata"]["deletionTimestamp"]
        deleting["metadata"]["finalizers"] = ["b"]
        updated = await store.update(deleting)
        assert updated["metadata"]["deletionTimestamp"]

    async def test_delete_not_found(self, store, sample_bucket):
        """Test that deleting a missing object raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.delete(sample_bucket)

    async def test_ignore_not_found(self, store, sample_bucket):
        """Test that ignore_not_found swallows only NotFoundError."""
        assert await ignore_not_found(store.delete(sample_bucket)) is None

    async def test_list_by_namespace(self, store, sample_bucket):
        """Test listing restricted to one namespace."""
        await store.create(sample_bucket)
        other = {
            "apiVersion": BUCKET_API,
            "kind": "StorageBucket",
            "metadata": {"name": "other", "namespace": "team-b"},
        }
        await store.create(other)

        assert len(await store.list(BUCKET_API, "StorageBucket")) == 2
        in_a = await store.list(BUCKET_API, "StorageBucket", namespace="team-a")
        assert [o["metadata"]["name"] for o in in_a] == ["test-bucket"]

    async def test_list_by_owner_index(self, store, sample_bucket):
        """Test listing bindings through the owner index."""
        owner = await store.create(sample_bucket)
        other_owner = await store.create(
            {
                "apiVersion": BUCKET_API,
                "kind": "StorageBucket",
                "metadata": {"name": "other-bucket", "namespace": "team-a"},
            }
        )
        await store.create(make_binding("b1", owner))
        await store.create(make_binding("b2", owner))
        await store.create(make_binding("b3", other_owner))

        selector = {
            TAG_BINDING_OWNER_KEY: owner_index_value(
                BUCKET_API, "StorageBucket", "test-bucket"
            )
        }
        owned = await store.list(
            TAG_BINDING_API_VERSION,
            TAG_BINDING_KIND,
            namespace="team-a",
            field_selector=selector,
        )
        assert [o["metadata"]["name"] for o in owned] == ["b1", "b2"]

    async def test_index_follows_updates(self, store, sample_bucket):
        """Test that removing the owner reference drops the index entry."""
        owner = await store.create(sample_bucket)
        binding = await store.create(make_binding("b1", owner))
        binding["metadata"]["ownerReferences"] = []
        await store.update(binding)

        selector = {
            TAG_BINDING_OWNER_KEY: owner_index_value(
                BUCKET_API, "StorageBucket", "test-bucket"
            )
        }
        owned = await store.list(
            TAG_BINDING_API_VERSION, TAG_BINDING_KIND, field_selector=selector
        )
        assert owned == []

    async def test_index_registered_after_objects(self, sample_bucket):
        """Test that registering an index covers existing objects."""
        store = InMemoryObjectStore()
        await store.create(sample_bucket)
        store.register_field_index(
            BUCKET_API, "StorageBucket", "spec.location",
            lambda obj: [obj["spec"]["location"]],
        )
        found = await store.list(
            BUCKET_API, "StorageBucket", field_selector={"spec.location": "EU"}
        )
        assert len(found) == 1

    async def test_list_unknown_index(self, store):
        """Test that selecting on an unregistered index raises ValueError."""
        with pytest.raises(ValueError, match="No field index"):
            await store.list(BUCKET_API, "StorageBucket", field_selector={"x": "y"})

    async def test_dependents_collected(self, store, sample_bucket):
        """Test that removing an owner removes the objects it owns."""
        owner = await store.create(sample_bucket)
        await store.create(make_binding("b1", owner))
        await store.delete(owner)

        with pytest.raises(NotFoundError):
            await store.get(TAG_BINDING_API_VERSION, TAG_BINDING_KIND, "team-a", "b1")

    async def test_dependents_with_finalizers_marked(self, store, sample_bucket):
        """Test that owned objects with finalizers are only marked."""
        owner = await store.create(sample_bucket)
        binding = make_binding("b1", owner)
        binding["metadata"]["finalizers"] = ["cnrm.cloud.google.com/finalizer"]
        await store.create(binding)
        await store.delete(owner)

        remaining = await store.get(
            TAG_BINDING_API_VERSION, TAG_BINDING_KIND, "team-a", "b1"
        )
        assert remaining["metadata"]["deletionTimestamp"]

    async def test_marked_dependent_gets_new_version(self, store, sample_bucket):
        """Test that marking an owned object bumps its resourceVersion."""
        owner = await store.create(sample_bucket)
        binding = make_binding("b1", owner)
        binding["metadata"]["finalizers"] = ["cnrm.cloud.google.com/finalizer"]
        created = await store.create(binding)
        await store.delete(owner)

        marked = await store.get(
            TAG_BINDING_API_VERSION, TAG_BINDING_KIND, "team-a", "b1"
        )
        assert marked["metadata"]["resourceVersion"] != (
            created["metadata"]["resourceVersion"]
        )
        with pytest.raises(ConflictError):
            await store.update(created)

        marked["metadata"]["finalizers"] = []
        await store.update(marked)
        with pytest.raises(NotFoundError):
            await store.get(TAG_BINDING_API_VERSION, TAG_BINDING_KIND, "team-a", "b1")
