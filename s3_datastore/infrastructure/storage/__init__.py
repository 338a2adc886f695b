"""
Object storage backends for the S3 data store.

Supports AWS S3 (and S3-compatible services) through boto3.
Includes an in-memory mock backend for local development without credentials.
"""

from .client import (
    Boto3StorageBackend,
    MockStorageBackend,
    create_storage_backend,
)

__all__ = ["Boto3StorageBackend", "MockStorageBackend", "create_storage_backend"]
