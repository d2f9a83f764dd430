"""
Configuration module for the Tagging Operator.

Loads configuration from environment variables. Every constant the
reconciler relies on (annotation keys, finalizer names, retry delays) lives
here and is passed into the components at construction time.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

LABEL_MATCH_TARGETS = ("key", "value")
BINDING_DELETION_POLICIES = ("delete", "orphan")


def _env_list(name: str, default: str = "") -> List[str]:
    """Split a comma separated environment variable into a list."""
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class DatabaseConfig:
    """PostgreSQL object store configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "tagging_operator"
    user: str = "operator"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 2
    max_pool_size: int = 10

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "tagging_operator"),
            user=os.getenv("DB_USER", "operator"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class TagsConfig:
    """Cloud Resource Manager tags API configuration."""

    api_base_url: str = "https://cloudresourcemanager.googleapis.com/v3"
    access_token: str = field(default="", repr=False)
    cache_ttl: float = 300.0  # seconds
    operation_poll_interval: float = 1.0
    operation_timeout: float = 120.0
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            api_base_url=os.getenv(
                "RESOURCE_MANAGER_URL",
                "https://cloudresourcemanager.googleapis.com/v3",
            ),
            access_token=os.getenv("GCP_ACCESS_TOKEN", ""),
            cache_ttl=float(os.getenv("TAG_CACHE_TTL", "300")),
            operation_poll_interval=float(os.getenv("OPERATION_POLL_INTERVAL", "1")),
            operation_timeout=float(os.getenv("OPERATION_TIMEOUT", "120")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
        )


@dataclass
class ControllerConfig:
    """Taggable resource reconciliation configuration."""

    target_labels: str = ".*"
    label_match_target: str = "key"
    finalizer: str = "gdp.deliveryhero.io/resource-tags"
    project_id_annotation: str = "cnrm.cloud.google.com/project-id"
    managed_api_group_suffix: str = ".cnrm.cloud.google.com"
    binding_deletion_policy: str = "delete"
    binding_finalizers: List[str] = field(
        default_factory=lambda: ["cnrm.cloud.google.com/finalizer"]
    )

    retry_delay: int = 10  # seconds
    cleanup_retry_delay: int = 10  # seconds
    reconcile_timeout: float = 120.0
    cleanup_unused_tags: bool = True
    log_level: str = "INFO"

    def __post_init__(self):
        if self.label_match_target not in LABEL_MATCH_TARGETS:
            raise ValueError(
                f"Invalid label match target: {self.label_match_target}. "
                f"Expected one of: {', '.join(LABEL_MATCH_TARGETS)}"
            )
        if self.binding_deletion_policy not in BINDING_DELETION_POLICIES:
            raise ValueError(
                f"Invalid binding deletion policy: {self.binding_deletion_policy}. "
                f"Expected one of: {', '.join(BINDING_DELETION_POLICIES)}"
            )

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            target_labels=os.getenv("TARGET_LABELS", ".*"),
            label_match_target=os.getenv("LABEL_MATCH_TARGET", "key").lower(),
            finalizer=os.getenv(
                "TAGGING_FINALIZER", "gdp.deliveryhero.io/resource-tags"
            ),
            project_id_annotation=os.getenv(
                "PROJECT_ID_ANNOTATION", "cnrm.cloud.google.com/project-id"
            ),
            managed_api_group_suffix=os.getenv(
                "MANAGED_API_GROUP_SUFFIX", ".cnrm.cloud.google.com"
            ),
            binding_deletion_policy=os.getenv(
                "BINDING_DELETION_POLICY", "delete"
            ).lower(),
            binding_finalizers=_env_list(
                "BINDING_FINALIZERS", "cnrm.cloud.google.com/finalizer"
            ),
            retry_delay=int(os.getenv("RETRY_DELAY", "10")),
            cleanup_retry_delay=int(os.getenv("CLEANUP_RETRY_DELAY", "10")),
            reconcile_timeout=float(os.getenv("RECONCILE_TIMEOUT", "120")),
            cleanup_unused_tags=_env_bool("CLEANUP_UNUSED_TAGS", "true"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class ResourcesConfig:
    """Which taggable resource kinds get a reconciler."""

    # Empty = every registered kind
    enabled_kinds: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(enabled_kinds=_env_list("ENABLED_RESOURCE_KINDS"))


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    tags: TagsConfig
    controller: ControllerConfig
    resources: ResourcesConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            tags=TagsConfig.from_env(),
            controller=ControllerConfig.from_env(),
            resources=ResourcesConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            tags=TagsConfig(),
            controller=ControllerConfig(),
            resources=ResourcesConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
