"""Tests for selecting data stores by name."""

import pytest

import s3_datastore  # noqa: F401  registers "s3"
from s3_datastore.core.datastore import S3DataStore
from s3_datastore.core.exceptions import UnknownDataStore
from s3_datastore.core.registry import (
    create_datastore,
    get_datastore_factory,
    list_datastores,
    register_datastore,
    unregister_datastore,
)


@pytest.fixture
def scratch_name():
    """Registry name removed again after the test."""
    name = "scratch-store"
    yield name
    unregister_datastore(name)


def test_s3_is_registered():
    assert "s3" in list_datastores()


def test_create_s3_store_by_name():
    store = create_datastore("s3", mock_mode=True, bucket_name="content", region="eu-west-1")

    assert isinstance(store, S3DataStore)
    assert store.bucket_name == "content"
    assert store.region == "eu-west-1"


def test_unknown_name():
    with pytest.raises(UnknownDataStore, match="Available: .*s3"):
        create_datastore("ftp")


def test_unknown_name_is_a_key_error():
    with pytest.raises(KeyError):
        get_datastore_factory("ftp")


def test_register_decorator_returns_factory(scratch_name):
    @register_datastore(scratch_name)
    def build(**options):
        return options

    assert build(a=1) == {"a": 1}
    assert create_datastore(scratch_name, a=1) == {"a": 1}


def test_duplicate_name_rejected(scratch_name):
    register_datastore(scratch_name)(dict)

    with pytest.raises(ValueError, match="already registered"):
        register_datastore(scratch_name)(list)


def test_replace(scratch_name):
    register_datastore(scratch_name)(dict)
    register_datastore(scratch_name, replace=True)(list)

    assert get_datastore_factory(scratch_name) is list
