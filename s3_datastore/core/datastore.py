"""
S3 data store.

This is the piece the content pipeline talks to. It knows how uids map
to bucket paths, how metadata is carried in headers, and when the
bucket and credentials have to be checked. It does not know how to talk
to S3: every remote call goes through a StorageBackend, built lazily by
an injected factory, so tests and local development can swap in an
in-memory backend.

State machine per instance:
- the backend handle is built on first use and kept
- credentials/bucket settings are validated on the first write or read
- the bucket is checked (and created if missing) on the first write
Each of these happens once; none is ever reset.
"""

import dataclasses
import logging
import threading
from datetime import datetime, timezone
from typing import Any, BinaryIO, Callable, Mapping, Optional, Protocol, TypeVar, Union

from .exceptions import Conflict, NotConfigured, NotFound, TransientError
from .metadata import full_storage_headers, headers_to_meta
from .models import BackendObject, Content, StoreConfig, StoredObject
from .paths import default_url_host, domain_for_region, full_path, generate_uid, public_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

Expiry = Union[datetime, int, float]


class StorageBackend(Protocol):
    """
    Remote operations the data store needs from an object-storage service.

    Implementations raise NotFound, Conflict and TransientError from
    core.exceptions; any other failure propagates as-is.
    """

    def put_object(
        self,
        bucket: str,
        path: str,
        body: BinaryIO,
        headers: Mapping[str, str],
    ) -> None:
        """Store the body at path with the given storage headers."""
        ...

    def get_object(self, bucket: str, path: str) -> BackendObject:
        """Fetch body and headers. Raises NotFound if absent."""
        ...

    def delete_object(self, bucket: str, path: str) -> None:
        """Delete the object. Raises NotFound or Conflict."""
        ...

    def get_bucket_location(self, bucket: str) -> Optional[str]:
        """Return the bucket's region. Raises NotFound if the bucket is absent."""
        ...

    def create_bucket(self, bucket: str, location_constraint: Optional[str]) -> None:
        ...

    def get_signed_url(
        self,
        bucket: str,
        path: str,
        expires_at: datetime,
        query: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Generate a time-limited HTTPS download URL."""
        ...

    def reload(self) -> None:
        """Drop and rebuild the underlying connection."""
        ...

    def sync_clock(self) -> None:
        """Check the local clock against the service clock and report skew."""
        ...


BackendFactory = Callable[[StoreConfig], StorageBackend]


def _config_attribute(name: str) -> property:
    """Expose a StoreConfig field as a read/write attribute of the store."""

    def getter(self: "S3DataStore") -> Any:
        return getattr(self.config, name)

    def setter(self: "S3DataStore", value: Any) -> None:
        setattr(self.config, name, value)

    return property(getter, setter, doc=f"StoreConfig.{name}")


def _expiry_to_datetime(expires: Expiry) -> datetime:
    if isinstance(expires, datetime):
        if expires.tzinfo is None:
            return expires.replace(tzinfo=timezone.utc)
        return expires
    return datetime.fromtimestamp(expires, tz=timezone.utc)


class S3DataStore:
    """
    Persists content to an S3 bucket and reads it back by uid.

    Options passed as keyword arguments override the matching fields of
    ``config``, so ``S3DataStore(bucket_name="b", backend_factory=f)``
    works without building a StoreConfig first. The store keeps its own
    copy of the configuration; changing it through the store's attributes
    never affects the StoreConfig passed in or any other store.
    """

    bucket_name = _config_attribute("bucket_name")
    access_key_id = _config_attribute("access_key_id")
    secret_access_key = _config_attribute("secret_access_key")
    region = _config_attribute("region")
    storage_headers = _config_attribute("storage_headers")
    url_scheme = _config_attribute("url_scheme")
    url_host = _config_attribute("url_host")
    use_iam_profile = _config_attribute("use_iam_profile")
    root_path = _config_attribute("root_path")
    backend_extra_options = _config_attribute("backend_extra_options")
    sync_clock_on_init = _config_attribute("sync_clock_on_init")

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        *,
        backend_factory: BackendFactory,
        **options: Any,
    ) -> None:
        known = {f.name for f in dataclasses.fields(StoreConfig)}
        for name in options:
            if name not in known:
                raise TypeError(f"Unknown {type(self).__name__} option: {name}")

        # Private copy; the caller's config (and its mappings) stay untouched
        self.config = dataclasses.replace(config or StoreConfig(), **options)
        self.config.storage_headers = dict(self.config.storage_headers or {})
        self.config.backend_extra_options = dict(self.config.backend_extra_options or {})

        self._backend_factory = backend_factory
        self._storage: Optional[StorageBackend] = None
        self._configured = False
        self._bucket_initialized = False
        # Reentrant: bucket initialization goes through the storage property
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def write(
        self,
        content: Content,
        path: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Store content and return its uid.

        Args:
            content: Payload, mime type, name and meta to store
            path: Use this uid instead of generating one
            headers: Extra storage headers; these win over the defaults,
                the metadata header and the content type

        Returns:
            The uid, without the root path
        """
        self._ensure_configured()
        self._ensure_bucket_initialized()

        write_headers = {"Content-Type": content.mime_type}
        write_headers.update(headers or {})
        uid = path or generate_uid(content.name or "file")
        object_path = full_path(self.root_path, uid)
        all_headers = full_storage_headers(self.storage_headers, write_headers, content.meta)

        def put() -> None:
            with content.open() as stream:
                self.storage.put_object(self.bucket_name, object_path, stream, all_headers)

        self._rescuing_socket_errors(put, operation="put_object")

        logger.debug(
            "Stored content",
            extra={"bucket": self.bucket_name, "path": object_path, "size_bytes": content.size},
        )

        return uid

    def read(self, uid: str) -> Optional[StoredObject]:
        """
        Fetch the payload and metadata stored under uid.

        Returns None when the object does not exist.
        """
        self._ensure_configured()
        object_path = full_path(self.root_path, uid)

        try:
            response = self._rescuing_socket_errors(
                lambda: self.storage.get_object(self.bucket_name, object_path),
                operation="get_object",
            )
        except NotFound:
            logger.debug("Object not found", extra={"bucket": self.bucket_name, "path": object_path})
            return None

        return StoredObject(response.body, headers_to_meta(response.headers))

    def destroy(self, uid: str) -> None:
        """Delete the object stored under uid. Missing objects only log a warning."""
        object_path = full_path(self.root_path, uid)

        try:
            self._rescuing_socket_errors(
                lambda: self.storage.delete_object(self.bucket_name, object_path),
                operation="delete_object",
            )
        except (NotFound, Conflict) as e:
            logger.warning(
                f"{type(self).__name__} destroy error: {e}",
                extra={"bucket": self.bucket_name, "path": object_path},
            )

    def url_for(
        self,
        uid: str,
        expires: Optional[Expiry] = None,
        scheme: Optional[str] = None,
        host: Optional[str] = None,
        query: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        URL for serving the object directly from S3.

        With ``expires`` (a datetime or epoch seconds) the backend signs
        a time-limited HTTPS URL. Otherwise the URL is built locally and
        assumes the object is publicly readable.
        """
        object_path = full_path(self.root_path, uid)

        if expires is not None:
            return self.storage.get_signed_url(
                self.bucket_name, object_path, _expiry_to_datetime(expires), query
            )

        scheme = scheme or self.url_scheme or "http"
        host = host or self.url_host or default_url_host(self.bucket_name)
        return public_url(scheme, host, object_path)

    @property
    def domain(self) -> str:
        """S3 host for the configured region. Raises InvalidRegion if unknown."""
        return domain_for_region(self.region)

    def bucket_exists(self) -> bool:
        try:
            self._rescuing_socket_errors(
                lambda: self.storage.get_bucket_location(self.bucket_name),
                operation="get_bucket_location",
            )
            return True
        except NotFound:
            return False

    @property
    def storage(self) -> StorageBackend:
        """Backend handle, built on first access."""
        with self._lock:
            if self._storage is None:
                storage = self._backend_factory(self.config)
                if self.sync_clock_on_init:
                    storage.sync_clock()
                self._storage = storage
            return self._storage

    # ------------------------------------------------------------------
    # One-time initialization
    # ------------------------------------------------------------------

    def _ensure_configured(self) -> None:
        with self._lock:
            if self._configured:
                return

            if self.use_iam_profile:
                required = ("bucket_name",)
            else:
                required = ("bucket_name", "access_key_id", "secret_access_key")

            for attr in required:
                if not getattr(self, attr):
                    raise NotConfigured(
                        f"You need to configure {type(self).__name__} with {attr}",
                        field_name=attr,
                    )

            self._configured = True

    def _ensure_bucket_initialized(self) -> None:
        with self._lock:
            if self._bucket_initialized:
                return

            if not self.bucket_exists():
                self._rescuing_socket_errors(
                    lambda: self.storage.create_bucket(self.bucket_name, self.region),
                    operation="create_bucket",
                )
                logger.info(
                    "Created bucket",
                    extra={"bucket": self.bucket_name, "region": self.region},
                )

            self._bucket_initialized = True

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def _rescuing_socket_errors(self, func: Callable[[], T], operation: str) -> T:
        """
        Run a remote call, retrying once on a connection-level failure.

        The backend connection is rebuilt before the retry. A second
        failure reaches the caller.
        """
        try:
            return func()
        except TransientError as e:
            logger.warning(
                "Transient storage error, reloading connection and retrying",
                extra={"operation": operation, "bucket": self.bucket_name, "error": str(e)},
            )
            self.storage.reload()
            return func()
