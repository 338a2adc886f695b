"""
S3 data store - persists content objects to S3 and reads them back by uid.

This package contains:
- core: Framework-agnostic store logic (uids, metadata codec, lazy init, retry)
- infrastructure: Storage backends (boto3 and in-memory)
- config: Environment configuration

Importing the package registers the store under the name "s3".
"""

from .core.datastore import S3DataStore, StorageBackend
from .core.exceptions import (
    Conflict,
    DataStoreError,
    InvalidRegion,
    NotConfigured,
    NotFound,
    TransientError,
    UnknownDataStore,
)
from .core.models import Content, StoreConfig, StoredObject
from .core.registry import create_datastore, list_datastores, register_datastore
from .factory import create_s3_datastore, get_datastore

__version__ = "0.1.0"

__all__ = [
    "S3DataStore",
    "StorageBackend",
    "Content",
    "StoreConfig",
    "StoredObject",
    "DataStoreError",
    "NotConfigured",
    "NotFound",
    "Conflict",
    "TransientError",
    "InvalidRegion",
    "UnknownDataStore",
    "create_datastore",
    "list_datastores",
    "register_datastore",
    "create_s3_datastore",
    "get_datastore",
]
