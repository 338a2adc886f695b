"""
Storage backends for the S3 data store.

Boto3StorageBackend talks to AWS S3 (or any S3-compatible service via
``endpoint_url`` in the extra options). MockStorageBackend keeps
buckets in memory so the data store can be exercised without
credentials.

Both translate service failures into the data store's error kinds:
- missing object/bucket -> NotFound
- conflicting state -> Conflict
- dropped connections and timeouts -> TransientError
Anything else propagates unchanged.
"""

import email.utils
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, BinaryIO, Iterator, Mapping, Optional
from urllib.parse import urlencode

import boto3
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from ...core.datastore import StorageBackend
from ...core.exceptions import Conflict, NotFound, TransientError
from ...core.models import BackendObject, StoreConfig

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}
CONFLICT_CODES = {"409", "Conflict", "BucketNotEmpty", "OperationAborted"}

# Storage headers that boto3 exposes as put_object parameters
HEADER_PARAMS = {
    "content-type": "ContentType",
    "content-disposition": "ContentDisposition",
    "content-encoding": "ContentEncoding",
    "content-language": "ContentLanguage",
    "cache-control": "CacheControl",
    "expires": "Expires",
    "x-amz-acl": "ACL",
    "x-amz-storage-class": "StorageClass",
    "x-amz-server-side-encryption": "ServerSideEncryption",
}

META_PREFIX = "x-amz-meta-"

# S3 rejects requests signed more than 15 minutes off; warn well before that
MAX_CLOCK_SKEW_SECONDS = 300


@contextmanager
def translating_errors(operation: str, bucket: Optional[str], path: Optional[str] = None) -> Iterator[None]:
    """Map botocore failures onto NotFound, Conflict and TransientError."""
    try:
        yield
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code", ""))
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        target = f"{bucket}/{path}" if path else str(bucket)

        if code in NOT_FOUND_CODES or status == 404:
            raise NotFound(f"{operation}: {target} not found ({code})") from e
        if code in CONFLICT_CODES or status == 409:
            raise Conflict(f"{operation}: conflict on {target} ({code})") from e
        raise
    except (BotoConnectionError, HTTPClientError) as e:
        raise TransientError(f"{operation} failed: {e}", cause=e) from e


def split_headers(headers: Mapping[str, str]) -> tuple[dict[str, Any], dict[str, str]]:
    """
    Split storage headers into put_object parameters and raw headers.

    ``x-amz-meta-*`` headers become entries of ``Metadata``; headers
    boto3 has no parameter for are returned separately so they can be
    added to the signed request.
    """
    params: dict[str, Any] = {}
    metadata: dict[str, str] = {}
    raw: dict[str, str] = {}

    for name, value in headers.items():
        key = name.lower()
        if key in HEADER_PARAMS:
            params[HEADER_PARAMS[key]] = value
        elif key.startswith(META_PREFIX):
            metadata[key[len(META_PREFIX):]] = value
        else:
            raw[name] = value

    if metadata:
        params["Metadata"] = metadata

    return params, raw


class Boto3StorageBackend:
    """
    S3 backend built on boto3.

    The boto3 client is created from the StoreConfig at construction
    and rebuilt by reload(). In IAM-profile mode no keys are passed, so
    boto3 falls back to its default credential chain (instance profile,
    environment, shared config).
    """

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._raw_header_lock = threading.Lock()
        self.clock_skew: Optional[float] = None
        self._client = self._build_client()

        logger.info(
            "Initialized S3 storage backend",
            extra={
                "bucket": config.bucket_name,
                "region": config.region,
                "iam_profile": config.use_iam_profile,
            },
        )

    def client_options(self) -> dict[str, Any]:
        """
        Keyword arguments for boto3.client.

        Extra options go in first so the store's own settings win;
        None values are dropped so boto3 applies its defaults.
        """
        options = dict(self._config.backend_extra_options or {})
        options.update({
            "aws_access_key_id": None if self._config.use_iam_profile else self._config.access_key_id,
            "aws_secret_access_key": None if self._config.use_iam_profile else self._config.secret_access_key,
            "region_name": self._config.region,
        })
        return {name: value for name, value in options.items() if value is not None}

    def _build_client(self) -> Any:
        return boto3.client("s3", **self.client_options())

    def reload(self) -> None:
        logger.info("Reloading S3 client", extra={"bucket": self._config.bucket_name})
        self._client = self._build_client()

    def sync_clock(self) -> None:
        """
        Check the local clock against the service clock.

        This is a skew check, not a correction. botocore signs with the
        local clock and offers no offset to apply, so a large skew makes
        every request fail with RequestTimeTooSkewed. The skew is read
        from the Date header of a cheap bucket request, kept on
        ``clock_skew`` and logged as a warning past MAX_CLOCK_SKEW_SECONDS.
        """
        bucket = self._config.bucket_name
        if not bucket:
            return

        try:
            response = self._client.head_bucket(Bucket=bucket)
            http_headers = response.get("ResponseMetadata", {}).get("HTTPHeaders", {})
        except ClientError as e:
            # Error responses carry a Date header too
            http_headers = e.response.get("ResponseMetadata", {}).get("HTTPHeaders", {})
        except BotoCoreError as e:
            logger.warning("Could not sync clock with storage service", extra={"error": str(e)})
            return

        date = http_headers.get("date")
        if not isinstance(date, str):
            return

        server_time = email.utils.parsedate_to_datetime(date)
        self.clock_skew = (server_time - datetime.now(timezone.utc)).total_seconds()

        if abs(self.clock_skew) > MAX_CLOCK_SKEW_SECONDS:
            logger.warning(
                "Local clock differs from storage service clock",
                extra={"skew_seconds": self.clock_skew},
            )

    def put_object(
        self,
        bucket: str,
        path: str,
        body: BinaryIO,
        headers: Mapping[str, str],
    ) -> None:
        params, raw_headers = split_headers(headers)

        with translating_errors("put_object", bucket, path):
            if not raw_headers:
                self._client.put_object(Bucket=bucket, Key=path, Body=body, **params)
                return

            # The handler sees every PutObject on this client, so only one
            # request with raw headers may be in flight at a time
            with self._raw_header_lock:
                handler = self._header_injector(raw_headers)
                event_name = "before-sign.s3.PutObject"
                unique_id = f"inject-headers-{uuid.uuid4().hex}"
                self._client.meta.events.register(event_name, handler, unique_id=unique_id)
                try:
                    self._client.put_object(Bucket=bucket, Key=path, Body=body, **params)
                finally:
                    self._client.meta.events.unregister(event_name, unique_id=unique_id)

    @staticmethod
    def _header_injector(raw_headers: Mapping[str, str]) -> Any:
        def inject(request: Any, **kwargs: Any) -> None:
            for name, value in raw_headers.items():
                request.headers[name] = value

        return inject

    def get_object(self, bucket: str, path: str) -> BackendObject:
        with translating_errors("get_object", bucket, path):
            response = self._client.get_object(Bucket=bucket, Key=path)
            body = response["Body"].read()

        headers = dict(response.get("ResponseMetadata", {}).get("HTTPHeaders", {}))
        for key, value in (response.get("Metadata") or {}).items():
            headers[f"{META_PREFIX}{key}"] = value
        if response.get("ContentType"):
            headers["Content-Type"] = response["ContentType"]

        return BackendObject(body=body, headers=headers)

    def delete_object(self, bucket: str, path: str) -> None:
        with translating_errors("delete_object", bucket, path):
            self._client.delete_object(Bucket=bucket, Key=path)

    def get_bucket_location(self, bucket: str) -> Optional[str]:
        with translating_errors("get_bucket_location", bucket):
            response = self._client.get_bucket_location(Bucket=bucket)
        return response.get("LocationConstraint")

    def create_bucket(self, bucket: str, location_constraint: Optional[str]) -> None:
        kwargs: dict[str, Any] = {"Bucket": bucket}

        # us-east-1 is the one region that rejects an explicit constraint
        if location_constraint and location_constraint != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": location_constraint}

        with translating_errors("create_bucket", bucket):
            try:
                self._client.create_bucket(**kwargs)
            except ClientError as e:
                # Comes back as a 409; creation is idempotent for our purposes
                if e.response.get("Error", {}).get("Code") != "BucketAlreadyOwnedByYou":
                    raise
                logger.debug("Bucket already owned by us", extra={"bucket": bucket})

    def get_signed_url(
        self,
        bucket: str,
        path: str,
        expires_at: datetime,
        query: Optional[Mapping[str, str]] = None,
    ) -> str:
        expires_in = max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
        params: dict[str, Any] = {"Bucket": bucket, "Key": path}
        params.update(query or {})

        return self._client.generate_presigned_url(
            "get_object",
            Params=params,
            ExpiresIn=expires_in,
        )


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockStorageBackend:
    """
    In-memory storage backend.

    Buckets are dictionaries of {path: (bytes, headers)}. Error behavior
    follows S3: writing to or locating a missing bucket raises NotFound.
    Deleting a missing object also raises NotFound, which the data store
    turns into a warning. Header names are lower-cased on the way in,
    as they would be after an HTTP round trip.

    Not suitable for production.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, tuple[bytes, dict[str, str]]]] = {}
        self._regions: dict[str, Optional[str]] = {}
        self.reload_count = 0
        logger.info("Initialized mock storage backend (in-memory)")

    def _bucket(self, bucket: str) -> dict[str, tuple[bytes, dict[str, str]]]:
        if bucket not in self._buckets:
            raise NotFound(f"Bucket not found: {bucket}")
        return self._buckets[bucket]

    def put_object(
        self,
        bucket: str,
        path: str,
        body: BinaryIO,
        headers: Mapping[str, str],
    ) -> None:
        objects = self._bucket(bucket)
        objects[path] = (body.read(), {name.lower(): value for name, value in headers.items()})

        logger.debug(
            "Stored object in mock storage",
            extra={"bucket": bucket, "path": path},
        )

    def get_object(self, bucket: str, path: str) -> BackendObject:
        objects = self._bucket(bucket)
        if path not in objects:
            raise NotFound(f"Object not found: {bucket}/{path}")
        body, headers = objects[path]
        return BackendObject(body=body, headers=dict(headers))

    def delete_object(self, bucket: str, path: str) -> None:
        objects = self._bucket(bucket)
        if path not in objects:
            raise NotFound(f"Object not found: {bucket}/{path}")
        del objects[path]

    def get_bucket_location(self, bucket: str) -> Optional[str]:
        self._bucket(bucket)
        return self._regions.get(bucket)

    def create_bucket(self, bucket: str, location_constraint: Optional[str]) -> None:
        self._buckets.setdefault(bucket, {})
        self._regions.setdefault(bucket, location_constraint)

    def get_signed_url(
        self,
        bucket: str,
        path: str,
        expires_at: datetime,
        query: Optional[Mapping[str, str]] = None,
    ) -> str:
        expires_in = max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
        params = {"X-Amz-Expires": str(expires_in)}
        params.update(query or {})
        return f"mock://{bucket}/{path}?{urlencode(params)}"

    def reload(self) -> None:
        self.reload_count += 1

    def sync_clock(self) -> None:
        pass

    def object_paths(self, bucket: str) -> list[str]:
        """Stored paths in a bucket, for inspection in tests."""
        return sorted(self._buckets.get(bucket, {}))


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_backend(
    config: StoreConfig,
    mock_mode: bool = False,
) -> StorageBackend:
    """
    Create a storage backend for the given configuration.

    Args:
        config: Store configuration
        mock_mode: If True, return an in-memory backend

    Returns:
        StorageBackend implementation (boto3 or mock)
    """
    if mock_mode:
        return MockStorageBackend()

    return Boto3StorageBackend(config)
