"""Pytest configuration and fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from config import ControllerConfig
from reconciler import setup_tag_binding_index
from resourcemanager import Project, TagValue
from store import InMemoryObjectStore
from tags import TagsManager


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    conn.transaction = MagicMock()
    return conn


@pytest.fixture
def controller_config():
    """Controller configuration with short delays."""
    return ControllerConfig(reconcile_timeout=5.0)


@pytest.fixture
def store(controller_config):
    """In-memory object store with the tag binding owner index registered."""
    store = InMemoryObjectStore()
    setup_tag_binding_index(store, controller_config)
    return store


@pytest.fixture
def sample_project():
    """Project metadata as returned by Resource Manager."""
    return Project(
        name="projects/123456789",
        projectId="my-project",
        displayName="My Project",
    )


@pytest.fixture
def mock_tags(sample_project):
    """
    Tags manager double resolving every (key, value) pair to a stable
    tag value id, numbered in order of first lookup.
    """
    tags = AsyncMock(spec=TagsManager)
    value_ids = {}

    async def lookup_value(project_id, key, value):
        ident = value_ids.setdefault((project_id, key, value), 1000 + len(value_ids))
        return TagValue(
            name=f"tagValues/{ident}",
            parent="tagKeys/1",
            shortName=value,
            namespacedName=f"{project_id}/{key}/{value}",
        )

    tags.lookup_value.side_effect = lookup_value
    tags.get_project_info.return_value = sample_project
    tags.value_ids = value_ids
    return tags


@pytest.fixture
def sample_namespace():
    """Namespace annotated with its GCP project."""
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": "team-a",
            "annotations": {"cnrm.cloud.google.com/project-id": "my-project"},
        },
    }


@pytest.fixture
def sample_bucket():
    """StorageBucket manifest with two labels."""
    return {
        "apiVersion": "storage.cnrm.cloud.google.com/v1beta1",
        "kind": "StorageBucket",
        "metadata": {
            "name": "test-bucket",
            "namespace": "team-a",
            "labels": {"env": "prod", "team": "payments"},
        },
        "spec": {"location": "EU"},
    }
