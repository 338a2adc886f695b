"""
Data store wiring.

Connects the settings layer, the storage backends and the data store,
and registers the S3 data store under the name "s3" so a content
pipeline can select it from its own configuration:

    store = create_datastore("s3", bucket_name="my-bucket", ...)

In mock mode every store shares one in-memory backend so content
written through one instance can be read through another during a
development session.
"""

import logging
from typing import Any, Optional

from .config.settings import Settings, get_settings
from .core.datastore import BackendFactory, S3DataStore, StorageBackend
from .core.models import StoreConfig
from .core.registry import register_datastore
from .infrastructure.storage.client import MockStorageBackend, create_storage_backend

logger = logging.getLogger(__name__)

# Global mock backend (shared across stores for local development)
_mock_storage_backend: Optional[MockStorageBackend] = None


def _shared_mock_backend(config: StoreConfig) -> StorageBackend:
    global _mock_storage_backend

    if _mock_storage_backend is None:
        _mock_storage_backend = MockStorageBackend()
        logger.info("Created shared mock storage backend")
    return _mock_storage_backend


def reset_mock_backend() -> None:
    """Forget the shared mock backend and everything stored in it."""
    global _mock_storage_backend
    _mock_storage_backend = None


def get_backend_factory(mock_mode: bool = False) -> BackendFactory:
    if mock_mode:
        return _shared_mock_backend
    return create_storage_backend


@register_datastore("s3")
def create_s3_datastore(
    config: Optional[StoreConfig] = None,
    mock_mode: bool = False,
    **options: Any,
) -> S3DataStore:
    """
    Build an S3DataStore.

    Args:
        config: Base configuration; keyword options override its fields
        mock_mode: Store content in memory instead of S3
        **options: StoreConfig fields (bucket_name, region, root_path, ...)
    """
    return S3DataStore(config, backend_factory=get_backend_factory(mock_mode), **options)


def get_datastore(settings: Optional[Settings] = None) -> S3DataStore:
    """
    Build a data store from environment settings.

    Missing credentials are logged here but not raised: the store raises
    NotConfigured itself on the first write or read.
    """
    settings = settings or get_settings()

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    store = create_s3_datastore(settings.store_config(), mock_mode=settings.s3_mock_mode)

    logger.debug(
        "Created S3 data store",
        extra={"bucket": store.bucket_name, "mock_mode": settings.s3_mock_mode},
    )

    return store
