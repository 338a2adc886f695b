"""
Identifier, path and URL helpers.

Uids are what callers hold on to. The resolved path is where the object
actually lives in the bucket: the uid under the optional root path.
Keeping the root path out of the uid means a store can be moved under a
different prefix without rewriting every reference to its content.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from .exceptions import InvalidRegion

DEFAULT_REGION = "us-east-1"

REGIONS = {
    "us-east-1": "s3.amazonaws.com",  # default
    "us-west-1": "s3-us-west-1.amazonaws.com",
    "us-west-2": "s3-us-west-2.amazonaws.com",
    "ap-northeast-1": "s3-ap-northeast-1.amazonaws.com",
    "ap-southeast-1": "s3-ap-southeast-1.amazonaws.com",
    "ap-southeast-2": "s3-ap-southeast-2.amazonaws.com",
    "eu-west-1": "s3-eu-west-1.amazonaws.com",
    "eu-central-1": "s3-eu-central-1.amazonaws.com",
    "sa-east-1": "s3-sa-east-1.amazonaws.com",
}

# Bucket names that can be used as a DNS label in virtual-hosted URLs
SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]+[a-z0-9]$")


def generate_uid(name: str, now: Optional[datetime] = None) -> str:
    """
    Build a fresh uid: ``YYYY/MM/DD/HH/MM/SS/<random hex>/<name>``.

    The timestamp only makes the bucket browsable by date; uniqueness
    comes from the uuid4 token. The name is kept verbatim so the object
    key still reads like the original file name.
    """
    now = now or datetime.now(timezone.utc)
    return f"{now.strftime('%Y/%m/%d/%H/%M/%S')}/{uuid.uuid4().hex}/{name}"


def full_path(root_path: Optional[str], uid: str) -> str:
    """Join the root path and uid with exactly one slash. No URL encoding."""
    if not root_path:
        return uid
    return f"{root_path.rstrip('/')}/{uid.lstrip('/')}"


def valid_regions() -> list[str]:
    return list(REGIONS)


def domain_for_region(region: Optional[str]) -> str:
    """
    Service host for a region.

    Raises:
        InvalidRegion: If the region has no known host
    """
    region = region or DEFAULT_REGION
    if region not in REGIONS:
        raise InvalidRegion(
            f"Invalid region {region} - should be one of {', '.join(valid_regions())}"
        )
    return REGIONS[region]


def default_url_host(bucket_name: str) -> str:
    """Virtual-hosted style when the bucket is a valid DNS label, path style otherwise."""
    if SUBDOMAIN_PATTERN.match(bucket_name or ""):
        return f"{bucket_name}.s3.amazonaws.com"
    return f"s3.amazonaws.com/{bucket_name}"


def public_url(scheme: str, host: str, path: str) -> str:
    return f"{scheme}://{host}/{path}"
