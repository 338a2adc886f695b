"""Pytest configuration and fixtures."""

from unittest.mock import MagicMock

import pytest

from s3_datastore.core.datastore import S3DataStore
from s3_datastore.core.models import Content, StoreConfig
from s3_datastore.factory import reset_mock_backend
from s3_datastore.infrastructure.storage.client import MockStorageBackend

BUCKET_NAME = "test-bucket"


@pytest.fixture
def mock_backend() -> MockStorageBackend:
    """Fresh in-memory backend; no bucket exists yet."""
    return MockStorageBackend()


@pytest.fixture
def store_config() -> StoreConfig:
    """Fully configured store settings for the test bucket."""
    return StoreConfig(
        bucket_name=BUCKET_NAME,
        access_key_id="XXXXXXXXX",
        secret_access_key="XXXXXXXXX",
        region="eu-west-1",
    )


@pytest.fixture
def data_store(store_config, mock_backend) -> S3DataStore:
    """Data store wired to the in-memory backend."""
    return S3DataStore(store_config, backend_factory=lambda config: mock_backend)


@pytest.fixture
def content() -> Content:
    return Content(b"eggheads")


@pytest.fixture
def backend_double() -> MagicMock:
    """Backend double for asserting exact calls."""
    return MagicMock(spec=MockStorageBackend)


@pytest.fixture(autouse=True)
def _reset_shared_mock_backend():
    """Stores built in mock mode share one backend; isolate tests from each other."""
    reset_mock_backend()
    yield
    reset_mock_backend()
