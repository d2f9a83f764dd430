"""
Manager - wires the store, the tags manager and one reconciler per kind.

The hosting runtime (watch loop, work queue) is expected to call
Manager.reconcile(kind, namespace, name) for every change it observes and to
honour the requeue delay of the returned result.
"""

import logging
from typing import Dict, List, Optional

from bindings import TAG_BINDING_API_VERSION, TAG_BINDING_KIND
from config import Config
from db import PostgresObjectStore
from labels import limit_labels_with_regex
from reconciler import (
    ReconcileResult,
    Request,
    TaggableResourceReconciler,
    setup_tag_binding_index,
)
from resourcemanager import ResourceManagerClient
from resources.registry import (
    ResourceRegistry,
    get_registry,
    register_builtin_providers,
)
from store import ObjectStore
from tags import TagsManager, TTLCache

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Manager:
    """Owns the shared components and the per-kind reconcilers."""

    def __init__(
        self,
        store: ObjectStore,
        tags: TagsManager,
        config: Optional[Config] = None,
        registry: Optional[ResourceRegistry] = None,
    ):
        self.store = store
        self.tags = tags
        self.config = config or Config.default()

        if registry is None:
            registry = get_registry()
            if not registry.list_kinds():
                register_builtin_providers(registry)
        self.registry = registry

        ctrl_config = self.config.controller
        setup_tag_binding_index(self.store, ctrl_config)
        label_matcher = limit_labels_with_regex(
            ctrl_config.target_labels, ctrl_config.label_match_target
        )

        enabled_kinds = self.config.resources.enabled_kinds
        if not enabled_kinds:
            # If not specified, reconcile every registered kind
            enabled_kinds = self.registry.list_kinds()

        self.reconcilers: Dict[str, TaggableResourceReconciler] = {}
        for kind in enabled_kinds:
            if not self.registry.has_provider(kind):
                logger.warning(f"Resource kind '{kind}' not registered, skipping")
                continue

            self.reconcilers[kind] = TaggableResourceReconciler(
                store=self.store,
                tags=self.tags,
                provider=self.registry.get_provider(kind),
                label_matcher=label_matcher,
                config=ctrl_config,
            )
            logger.info(f"Set up tag reconciler for {kind}")

    @classmethod
    def from_config(
        cls, config: Config, registry: Optional[ResourceRegistry] = None
    ) -> "Manager":
        """Build a manager backed by PostgreSQL and the Resource Manager API."""
        logging.getLogger().setLevel(config.controller.log_level.upper())

        db_config = config.database
        store = PostgresObjectStore(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )

        tags_config = config.tags
        client = ResourceManagerClient(
            api_base_url=tags_config.api_base_url,
            access_token=tags_config.access_token,
            poll_interval=tags_config.operation_poll_interval,
            operation_timeout=tags_config.operation_timeout,
            request_timeout=tags_config.request_timeout,
        )
        tags = TagsManager(client, TTLCache(tags_config.cache_ttl))

        return cls(store, tags, config, registry)

    @property
    def kinds(self) -> List[str]:
        return list(self.reconcilers.keys())

    def get_reconciler(self, kind: str) -> TaggableResourceReconciler:
        """
        Get the reconciler for a kind.

        Raises:
            KeyError: If no reconciler is set up for the kind
        """
        if kind not in self.reconcilers:
            raise KeyError(f"No tag reconciler for kind: {kind}")
        return self.reconcilers[kind]

    async def reconcile(self, kind: str, namespace: str, name: str) -> ReconcileResult:
        """Reconcile one resource of the given kind."""
        reconciler = self.get_reconciler(kind)
        return await reconciler.reconcile(Request(namespace=namespace, name=name))

    async def start(self) -> None:
        """Connect the store and make sure the schema and indexes exist."""
        logger.info("Starting tagging operator")
        if isinstance(self.store, PostgresObjectStore):
            await self.store.connect()
            await self.store.initialize_schema()
            await self.store.reindex(TAG_BINDING_API_VERSION, TAG_BINDING_KIND)
        logger.info(f"Reconciling kinds: {', '.join(self.kinds) or 'none'}")

    async def close(self) -> None:
        """Release the store connections."""
        if isinstance(self.store, PostgresObjectStore):
            await self.store.close()
        logger.info("Tagging operator stopped")
