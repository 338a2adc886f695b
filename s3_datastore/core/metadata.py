"""
Metadata codec.

Content metadata travels with each object as storage headers. Current
objects carry one JSON document under ``x-amz-meta-json`` with every
string value percent-escaped (S3 user metadata must be ASCII). Objects
written by older stores carry a base64 pickled mapping under
``x-amz-meta-extra`` instead.

Reading tries each decoder in order and stops at the first one that
yields a mapping, so both kinds of object stay readable without a
migration step.
"""

import base64
import io
import json
import logging
import pickle
from typing import Any, Callable, Mapping, Optional
from urllib.parse import quote_plus, unquote_plus

from .models import Meta

logger = logging.getLogger(__name__)

JSON_META_HEADER = "x-amz-meta-json"
LEGACY_META_HEADER = "x-amz-meta-extra"


def escape_meta_values(meta: Mapping[str, Any]) -> Meta:
    """Percent-escape string values; numbers, booleans and None pass through."""
    return {
        key: quote_plus(value) if isinstance(value, str) else value
        for key, value in meta.items()
    }


def unescape_meta_values(meta: Mapping[str, Any]) -> Meta:
    return {
        key: unquote_plus(value) if isinstance(value, str) else value
        for key, value in meta.items()
    }


def meta_to_headers(meta: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Encode a metadata mapping as the JSON metadata header."""
    escaped = escape_meta_values(meta or {})
    return {JSON_META_HEADER: json.dumps(escaped)}


def full_storage_headers(
    storage_headers: Optional[Mapping[str, str]],
    headers: Optional[Mapping[str, str]],
    meta: Optional[Mapping[str, Any]],
) -> dict[str, str]:
    """
    Merge the headers for a write.

    Precedence, lowest first: store defaults, metadata header, the
    per-write headers. So a caller can replace the metadata header
    outright by passing their own ``x-amz-meta-json``.
    """
    merged = dict(storage_headers or {})
    merged.update(meta_to_headers(meta))
    merged.update(headers or {})
    return merged


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

class _RestrictedUnpickler(pickle.Unpickler):
    """
    Unpickler that only rebuilds builtin containers and scalars.

    Dicts, lists, strings and numbers never go through find_class, so
    refusing every global lookup leaves legacy metadata readable while
    blocking arbitrary object construction.
    """

    def find_class(self, module: str, name: str) -> Any:
        raise pickle.UnpicklingError(
            f"Refusing to load {module}.{name} from legacy metadata"
        )


def encode_legacy_meta(meta: Mapping[str, Any]) -> str:
    """Encode metadata in the legacy ``x-amz-meta-extra`` format."""
    return base64.b64encode(pickle.dumps(dict(meta), protocol=2)).decode("ascii")


def decode_legacy_meta(value: str) -> Meta:
    raw = base64.b64decode(value)
    data = _RestrictedUnpickler(io.BytesIO(raw)).load()
    if not isinstance(data, dict):
        raise ValueError("Legacy metadata is not a mapping")
    return {str(key): item for key, item in data.items()}


def _decode_json_header(headers: Mapping[str, str]) -> Optional[Meta]:
    value = headers.get(JSON_META_HEADER)
    if not value:
        return None
    return unescape_meta_values(json.loads(value))


def _decode_legacy_header(headers: Mapping[str, str]) -> Optional[Meta]:
    value = headers.get(LEGACY_META_HEADER)
    if value is None:
        return None
    return decode_legacy_meta(value)


# Order matters: the current format wins when both headers are present.
META_DECODERS: list[Callable[[Mapping[str, str]], Optional[Meta]]] = [
    _decode_json_header,
    _decode_legacy_header,
]


def headers_to_meta(headers: Optional[Mapping[str, str]]) -> Optional[Meta]:
    """
    Recover the metadata mapping from object headers.

    Header names are matched case-insensitively. Returns None when the
    object carries no metadata header at all.
    """
    if not headers:
        return None

    normalized = {key.lower(): value for key, value in headers.items()}

    for decoder in META_DECODERS:
        meta = decoder(normalized)
        if meta is not None:
            return meta

    logger.debug("No metadata header found", extra={"headers": list(normalized)})
    return None
