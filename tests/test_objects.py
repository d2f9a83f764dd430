"""Unit tests for objects.py - Manifest helpers."""

import pytest

from objects import (
    add_finalizer,
    contains_finalizer,
    get_annotations,
    get_controller_of,
    get_labels,
    get_namespace,
    is_being_deleted,
    mark_deleted,
    owner_reference,
    remove_finalizer,
    remove_owner_reference,
    set_controller_reference,
)


@pytest.fixture
def owner():
    return {
        "apiVersion": "storage.cnrm.cloud.google.com/v1beta1",
        "kind": "StorageBucket",
        "metadata": {"name": "test-bucket", "namespace": "team-a", "uid": "uid-1"},
    }


@pytest.fixture
def dependent():
    return {
        "apiVersion": "tags.cnrm.cloud.google.com/v1beta1",
        "kind": "TagsLocationTagBinding",
        "metadata": {"name": "binding", "namespace": "team-a"},
    }


class TestAccessors:
    """Tests for metadata accessors."""

    def test_missing_metadata(self):
        """Test accessors on an object without metadata."""
        obj = {}
        assert get_namespace(obj) == ""
        assert get_labels(obj) == {}
        assert get_annotations(obj) == {}
        assert is_being_deleted(obj) is False

    def test_labels_are_copied(self):
        """Test that get_labels does not expose the stored dict."""
        obj = {"metadata": {"labels": {"env": "prod"}}}
        get_labels(obj)["env"] = "dev"
        assert obj["metadata"]["labels"]["env"] == "prod"

    def test_mark_deleted(self):
        """Test that the deletion marker is set once."""
        obj = {"metadata": {}}
        mark_deleted(obj)
        first = obj["metadata"]["deletionTimestamp"]
        assert first.endswith("Z")
        mark_deleted(obj)
        assert obj["metadata"]["deletionTimestamp"] == first
        assert is_being_deleted(obj)


class TestFinalizers:
    """Tests for finalizer helpers."""

    def test_add_finalizer(self):
        """Test adding a finalizer reports a change only once."""
        obj = {"metadata": {}}
        assert add_finalizer(obj, "example.com/f") is True
        assert add_finalizer(obj, "example.com/f") is False
        assert obj["metadata"]["finalizers"] == ["example.com/f"]
        assert contains_finalizer(obj, "example.com/f")

    def test_remove_finalizer(self):
        """Test removing a finalizer keeps the others."""
        obj = {"metadata": {"finalizers": ["a", "b"]}}
        assert remove_finalizer(obj, "a") is True
        assert remove_finalizer(obj, "a") is False
        assert obj["metadata"]["finalizers"] == ["b"]


class TestOwnerReferences:
    """Tests for owner reference helpers."""

    def test_owner_reference(self, owner):
        """Test building an owner reference."""
        ref = owner_reference(owner)
        assert ref == {
            "apiVersion": "storage.cnrm.cloud.google.com/v1beta1",
            "kind": "StorageBucket",
            "name": "test-bucket",
            "controller": True,
            "blockOwnerDeletion": True,
            "uid": "uid-1",
        }

    def test_set_controller_reference(self, owner, dependent):
        """Test making an object controlled by its owner."""
        set_controller_reference(owner, dependent)
        controller = get_controller_of(dependent)
        assert controller["name"] == "test-bucket"
        assert controller["uid"] == "uid-1"

    def test_set_controller_reference_idempotent(self, owner, dependent):
        """Test setting the same controller twice keeps one reference."""
        set_controller_reference(owner, dependent)
        set_controller_reference(owner, dependent)
        assert len(dependent["metadata"]["ownerReferences"]) == 1

    def test_cross_namespace_rejected(self, owner, dependent):
        """Test that owners in another namespace are rejected."""
        dependent["metadata"]["namespace"] = "team-b"
        with pytest.raises(ValueError, match="Cross-namespace"):
            set_controller_reference(owner, dependent)

    def test_other_controller_rejected(self, owner, dependent):
        """Test that an existing different controller is not replaced."""
        other = {
            "apiVersion": "sql.cnrm.cloud.google.com/v1beta1",
            "kind": "SQLInstance",
            "metadata": {"name": "db", "namespace": "team-a", "uid": "uid-2"},
        }
        set_controller_reference(other, dependent)
        with pytest.raises(ValueError, match="already owned"):
            set_controller_reference(owner, dependent)

    def test_remove_owner_reference(self, owner, dependent):
        """Test stripping the reference to an owner."""
        set_controller_reference(owner, dependent)
        assert remove_owner_reference(dependent, owner) is True
        assert get_controller_of(dependent) is None
        assert remove_owner_reference(dependent, owner) is False

    def test_remove_owner_reference_without_uid(self, owner, dependent):
        """Test that owners without uid match by group, kind and name."""
        del owner["metadata"]["uid"]
        set_controller_reference(owner, dependent)
        assert remove_owner_reference(dependent, owner) is True
