"""
Domain models for the data store.

These models have no dependency on boto3 or on the settings layer.
Content is what the pipeline hands us; StoreConfig is everything the
store needs to know to talk to a bucket.
"""

import io
import mimetypes
from dataclasses import dataclass, field
from typing import Any, BinaryIO, NamedTuple, Optional, Union


# Metadata values are JSON scalars. Only strings get percent-escaped.
MetaValue = Union[str, int, float, bool, None]
Meta = dict[str, Any]

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_STORAGE_HEADERS = {"x-amz-acl": "public-read"}


@dataclass
class Content:
    """
    A piece of content handed over by the pipeline.

    The store reads the payload, mime type, name and meta, and never
    changes them. Text payloads are stored as UTF-8.
    """
    data: Union[bytes, str] = b""
    name: Optional[str] = None
    meta: Meta = field(default_factory=dict)
    mime_type: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.data, str):
            self.data = self.data.encode("utf-8")
        if self.mime_type is None:
            self.mime_type = self._guess_mime_type()

    def _guess_mime_type(self) -> str:
        if self.name:
            guessed, _ = mimetypes.guess_type(self.name)
            if guessed:
                return guessed
        return DEFAULT_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    def open(self) -> BinaryIO:
        """Return a fresh stream over the payload, positioned at the start."""
        return io.BytesIO(self.data)


@dataclass
class StoreConfig:
    """
    Configuration for an S3 data store.

    Either bucket_name plus the credential pair, or bucket_name plus
    use_iam_profile, must be set before the store makes a guarded call.
    """
    bucket_name: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region: Optional[str] = None
    storage_headers: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_STORAGE_HEADERS)
    )
    url_scheme: str = "http"
    url_host: Optional[str] = None
    use_iam_profile: bool = False
    root_path: Optional[str] = None
    backend_extra_options: dict[str, Any] = field(default_factory=dict)
    # Check for (and warn about) clock skew when the backend is built
    sync_clock_on_init: bool = True


class StoredObject(NamedTuple):
    """Payload and decoded metadata returned by a read."""
    data: bytes
    meta: Optional[Meta]


class BackendObject(NamedTuple):
    """Raw object as returned by a storage backend."""
    body: bytes
    headers: dict[str, str]
