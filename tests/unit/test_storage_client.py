"""Tests for the boto3 and in-memory storage backends."""

import email.utils
import io
import logging
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, ConnectionClosedError, EndpointConnectionError

from s3_datastore.core.exceptions import Conflict, NotFound, TransientError
from s3_datastore.core.models import StoreConfig
from s3_datastore.infrastructure.storage.client import (
    Boto3StorageBackend,
    MockStorageBackend,
    create_storage_backend,
    split_headers,
)

CLIENT_PATH = "s3_datastore.infrastructure.storage.client.boto3.client"


def client_error(code: str, status: int, operation: str = "GetObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status, "HTTPHeaders": {}},
        },
        operation,
    )


@pytest.fixture
def config() -> StoreConfig:
    return StoreConfig(
        bucket_name="test-bucket",
        access_key_id="test-access-key",
        secret_access_key="test-secret-key",
        region="eu-west-1",
    )


@pytest.fixture
def mock_s3():
    """boto3 S3 client double returned by boto3.client."""
    with patch(CLIENT_PATH) as mock_boto_client:
        s3 = MagicMock()
        mock_boto_client.return_value = s3
        s3.boto_client = mock_boto_client
        yield s3


class TestClientConstruction:
    """boto3.client is built from the store configuration."""

    @patch(CLIENT_PATH)
    def test_passes_credentials_and_region(self, mock_boto_client, config):
        Boto3StorageBackend(config)

        mock_boto_client.assert_called_once_with(
            "s3",
            aws_access_key_id="test-access-key",
            aws_secret_access_key="test-secret-key",
            region_name="eu-west-1",
        )

    @patch(CLIENT_PATH)
    def test_iam_profile_omits_keys(self, mock_boto_client, config):
        config.use_iam_profile = True

        Boto3StorageBackend(config)

        mock_boto_client.assert_called_once_with("s3", region_name="eu-west-1")

    @patch(CLIENT_PATH)
    def test_drops_unset_values(self, mock_boto_client, config):
        config.region = None

        Boto3StorageBackend(config)

        assert "region_name" not in mock_boto_client.call_args.kwargs

    @patch(CLIENT_PATH)
    def test_adds_extra_options(self, mock_boto_client, config):
        config.backend_extra_options = {
            "endpoint_url": "http://localhost:9000",
            "region_name": "ignored",
        }

        Boto3StorageBackend(config)

        kwargs = mock_boto_client.call_args.kwargs
        assert kwargs["endpoint_url"] == "http://localhost:9000"
        assert kwargs["aws_access_key_id"] == "test-access-key"
        # the store's own settings win over extra options
        assert kwargs["region_name"] == "eu-west-1"

    def test_reload_builds_a_new_client(self, mock_s3, config):
        backend = Boto3StorageBackend(config)

        backend.reload()

        assert mock_s3.boto_client.call_count == 2

    def test_factory_picks_backend(self, mock_s3, config):
        assert isinstance(create_storage_backend(config), Boto3StorageBackend)
        assert isinstance(create_storage_backend(config, mock_mode=True), MockStorageBackend)


class TestSplitHeaders:
    """Storage headers become put_object parameters where boto3 has one."""

    def test_known_headers_become_parameters(self):
        params, raw = split_headers({
            "Content-Type": "image/png",
            "x-amz-acl": "public-read",
            "Cache-Control": "max-age=60",
        })

        assert params == {"ContentType": "image/png", "ACL": "public-read", "CacheControl": "max-age=60"}
        assert raw == {}

    def test_meta_headers_become_metadata(self):
        params, raw = split_headers({"x-amz-meta-json": '{"a": 1}', "X-Amz-Meta-Extra": "abc"})

        assert params == {"Metadata": {"json": '{"a": 1}', "extra": "abc"}}
        assert raw == {}

    def test_unknown_headers_are_raw(self):
        params, raw = split_headers({"hello": "there"})

        assert params == {}
        assert raw == {"hello": "there"}


class TestPutObject:
    """Writing objects."""

    def test_puts_with_translated_headers(self, mock_s3, config):
        backend = Boto3StorageBackend(config)
        body = io.BytesIO(b"eggheads")

        backend.put_object("test-bucket", "a/b.png", body, {
            "Content-Type": "image/png",
            "x-amz-acl": "public-read",
            "x-amz-meta-json": "{}",
        })

        mock_s3.put_object.assert_called_once_with(
            Bucket="test-bucket",
            Key="a/b.png",
            Body=body,
            ContentType="image/png",
            ACL="public-read",
            Metadata={"json": "{}"},
        )

    def test_raw_headers_are_injected_before_signing(self, mock_s3, config):
        backend = Boto3StorageBackend(config)

        backend.put_object("test-bucket", "a", io.BytesIO(b"x"), {"hello": "there"})

        event_name, handler = mock_s3.meta.events.register.call_args.args
        assert event_name == "before-sign.s3.PutObject"
        mock_s3.meta.events.unregister.assert_called_once()

        request = MagicMock(headers={})
        handler(request=request)
        assert request.headers == {"hello": "there"}

    def test_no_handler_without_raw_headers(self, mock_s3, config):
        backend = Boto3StorageBackend(config)

        backend.put_object("test-bucket", "a", io.BytesIO(b"x"), {"Content-Type": "text/plain"})

        mock_s3.meta.events.register.assert_not_called()

    def test_connection_errors_are_transient(self, mock_s3, config):
        mock_s3.put_object.side_effect = ConnectionClosedError(endpoint_url="https://s3.amazonaws.com")
        backend = Boto3StorageBackend(config)

        with pytest.raises(TransientError):
            backend.put_object("test-bucket", "a", io.BytesIO(b"x"), {})


class TestGetObject:
    """Reading objects."""

    def test_returns_body_and_headers(self, mock_s3, config):
        mock_s3.get_object.return_value = {
            "Body": io.BytesIO(b"eggheads"),
            "ContentType": "image/png",
            "Metadata": {"json": '{"a": 1}'},
            "ResponseMetadata": {"HTTPHeaders": {"x-amz-meta-json": '{"a": 1}', "etag": '"abc"'}},
        }
        backend = Boto3StorageBackend(config)

        result = backend.get_object("test-bucket", "a/b.png")

        assert result.body == b"eggheads"
        assert result.headers["x-amz-meta-json"] == '{"a": 1}'
        assert result.headers["Content-Type"] == "image/png"
        mock_s3.get_object.assert_called_once_with(Bucket="test-bucket", Key="a/b.png")

    @pytest.mark.parametrize("code,status", [("NoSuchKey", 404), ("NoSuchBucket", 404), ("404", 404)])
    def test_missing_object_is_not_found(self, mock_s3, config, code, status):
        mock_s3.get_object.side_effect = client_error(code, status)
        backend = Boto3StorageBackend(config)

        with pytest.raises(NotFound):
            backend.get_object("test-bucket", "missing")

    def test_endpoint_unreachable_is_transient(self, mock_s3, config):
        mock_s3.get_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")
        backend = Boto3StorageBackend(config)

        with pytest.raises(TransientError) as exc_info:
            backend.get_object("test-bucket", "a")

        assert isinstance(exc_info.value.cause, EndpointConnectionError)

    def test_other_client_errors_propagate(self, mock_s3, config):
        mock_s3.get_object.side_effect = client_error("AccessDenied", 403)
        backend = Boto3StorageBackend(config)

        with pytest.raises(ClientError):
            backend.get_object("test-bucket", "a")


class TestDeleteObject:
    """Deleting objects."""

    def test_deletes(self, mock_s3, config):
        Boto3StorageBackend(config).delete_object("test-bucket", "a/b")
        mock_s3.delete_object.assert_called_once_with(Bucket="test-bucket", Key="a/b")

    def test_conflict(self, mock_s3, config):
        mock_s3.delete_object.side_effect = client_error("OperationAborted", 409, "DeleteObject")

        with pytest.raises(Conflict):
            Boto3StorageBackend(config).delete_object("test-bucket", "a/b")


class TestBuckets:
    """Bucket location and creation."""

    def test_location(self, mock_s3, config):
        mock_s3.get_bucket_location.return_value = {"LocationConstraint": "eu-west-1"}
        assert Boto3StorageBackend(config).get_bucket_location("test-bucket") == "eu-west-1"

    def test_missing_bucket_is_not_found(self, mock_s3, config):
        mock_s3.get_bucket_location.side_effect = client_error("NoSuchBucket", 404, "GetBucketLocation")

        with pytest.raises(NotFound):
            Boto3StorageBackend(config).get_bucket_location("test-bucket")

    def test_create_with_location_constraint(self, mock_s3, config):
        Boto3StorageBackend(config).create_bucket("test-bucket", "eu-west-1")

        mock_s3.create_bucket.assert_called_once_with(
            Bucket="test-bucket",
            CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )

    @pytest.mark.parametrize("region", [None, "us-east-1"])
    def test_create_in_default_region(self, mock_s3, config, region):
        Boto3StorageBackend(config).create_bucket("test-bucket", region)
        mock_s3.create_bucket.assert_called_once_with(Bucket="test-bucket")

    def test_already_owned_bucket_is_fine(self, mock_s3, config):
        mock_s3.create_bucket.side_effect = client_error("BucketAlreadyOwnedByYou", 409, "CreateBucket")

        Boto3StorageBackend(config).create_bucket("test-bucket", "eu-west-1")

    def test_bucket_taken_by_someone_else_is_a_conflict(self, mock_s3, config):
        mock_s3.create_bucket.side_effect = client_error("BucketAlreadyExists", 409, "CreateBucket")

        with pytest.raises(Conflict):
            Boto3StorageBackend(config).create_bucket("test-bucket", "eu-west-1")


class TestSignedUrl:
    """Presigned GET URLs."""

    def test_generates_presigned_get(self, mock_s3, config):
        mock_s3.generate_presigned_url.return_value = "https://signed"
        backend = Boto3StorageBackend(config)
        expires_at = datetime.now(timezone.utc) + timedelta(hours=1)

        url = backend.get_signed_url(
            "test-bucket", "a/b.png", expires_at, {"ResponseContentDisposition": "attachment"}
        )

        assert url == "https://signed"
        args, kwargs = mock_s3.generate_presigned_url.call_args
        assert args == ("get_object",)
        assert kwargs["Params"] == {
            "Bucket": "test-bucket",
            "Key": "a/b.png",
            "ResponseContentDisposition": "attachment",
        }
        assert 3590 <= kwargs["ExpiresIn"] <= 3600

    def test_past_expiry_is_clamped(self, mock_s3, config):
        backend = Boto3StorageBackend(config)

        backend.get_signed_url("test-bucket", "a", datetime(2011, 3, 30, tzinfo=timezone.utc))

        assert mock_s3.generate_presigned_url.call_args.kwargs["ExpiresIn"] == 1


class TestSyncClock:
    """Clock skew is measured from the service Date header."""

    def test_measures_skew(self, mock_s3, config):
        mock_s3.head_bucket.return_value = {
            "ResponseMetadata": {"HTTPHeaders": {"date": email.utils.formatdate(time.time(), usegmt=True)}}
        }
        backend = Boto3StorageBackend(config)

        backend.sync_clock()

        assert abs(backend.clock_skew) < 5

    def test_warns_on_large_skew(self, mock_s3, config, caplog):
        skewed = email.utils.formatdate(time.time() - 3600, usegmt=True)
        mock_s3.head_bucket.side_effect = ClientError(
            {
                "Error": {"Code": "404", "Message": "Not Found"},
                "ResponseMetadata": {"HTTPStatusCode": 404, "HTTPHeaders": {"date": skewed}},
            },
            "HeadBucket",
        )
        backend = Boto3StorageBackend(config)

        with caplog.at_level(logging.WARNING):
            backend.sync_clock()

        assert backend.clock_skew < -3000
        assert "clock" in caplog.text

    def test_skew_is_reported_not_applied(self, mock_s3, config):
        skewed = email.utils.formatdate(time.time() - 3600, usegmt=True)
        mock_s3.head_bucket.return_value = {"ResponseMetadata": {"HTTPHeaders": {"date": skewed}}}
        backend = Boto3StorageBackend(config)

        backend.sync_clock()

        # the client is neither rebuilt nor reconfigured
        assert mock_s3.boto_client.call_count == 1
        mock_s3.meta.events.register.assert_not_called()

    def test_unreachable_service_is_not_fatal(self, mock_s3, config):
        mock_s3.head_bucket.side_effect = EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")
        backend = Boto3StorageBackend(config)

        backend.sync_clock()

        assert backend.clock_skew is None


class TestMockStorageBackend:
    """The in-memory backend behaves like S3 for the store's purposes."""

    def test_put_requires_bucket(self):
        backend = MockStorageBackend()

        with pytest.raises(NotFound):
            backend.put_object("nope", "a", io.BytesIO(b"x"), {})

    def test_round_trip_lowercases_headers(self):
        backend = MockStorageBackend()
        backend.create_bucket("b", None)

        backend.put_object("b", "a", io.BytesIO(b"x"), {"Content-Type": "text/plain"})
        result = backend.get_object("b", "a")

        assert result.body == b"x"
        assert result.headers == {"content-type": "text/plain"}

    def test_delete_missing_is_not_found(self):
        backend = MockStorageBackend()
        backend.create_bucket("b", None)

        with pytest.raises(NotFound):
            backend.delete_object("b", "missing")

    def test_create_bucket_is_idempotent(self):
        backend = MockStorageBackend()
        backend.create_bucket("b", "eu-west-1")
        backend.put_object("b", "a", io.BytesIO(b"x"), {})

        backend.create_bucket("b", "eu-west-1")

        assert backend.object_paths("b") == ["a"]
