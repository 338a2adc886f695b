"""
Data store configuration using Pydantic settings.

Configuration is loaded from environment variables (or a .env file)
with the same defaults as StoreConfig. Using Pydantic's BaseSettings
means we get:
- Type validation at startup (fail fast if config is wrong)
- JSON parsing for the mapping options (headers, backend options)
- Easy testing with different configurations

Mock mode enables local development without an S3 account.
"""

from functools import lru_cache
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.models import DEFAULT_STORAGE_HEADERS, StoreConfig


class Settings(BaseSettings):
    """
    Data store settings loaded from environment variables.

    Mapping options (S3_STORAGE_HEADERS, S3_BACKEND_EXTRA_OPTIONS) are
    given as JSON objects in the environment.
    """

    # S3 Storage Configuration
    s3_bucket_name: Optional[str] = Field(
        default=None,
        description="Bucket that holds stored content"
    )
    s3_access_key_id: Optional[str] = Field(
        default=None,
        description="AWS access key ID. Not needed with an IAM profile."
    )
    s3_secret_access_key: Optional[str] = Field(
        default=None,
        description="AWS secret access key. Not needed with an IAM profile."
    )
    s3_region: Optional[str] = Field(
        default=None,
        description="Bucket region. Unset means us-east-1."
    )
    s3_storage_headers: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_STORAGE_HEADERS),
        description="Headers sent with every write. Default makes objects publicly readable."
    )
    s3_url_scheme: str = Field(
        default="http",
        description="Scheme for unsigned content URLs"
    )
    s3_url_host: Optional[str] = Field(
        default=None,
        description="Host (and optional path) for content URLs, e.g. a CDN domain"
    )
    s3_use_iam_profile: bool = Field(
        default=False,
        description="Use the instance IAM profile instead of an access key pair"
    )
    s3_root_path: Optional[str] = Field(
        default=None,
        description="Prefix for every object path in the bucket"
    )
    s3_backend_extra_options: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra keyword arguments for boto3.client, e.g. endpoint_url"
    )
    s3_sync_clock_on_init: bool = Field(
        default=True,
        description="Check the service clock for skew when the S3 client is created. Warns only; signing is not adjusted."
    )
    s3_mock_mode: bool = Field(
        default=False,
        description="Use in-memory storage instead of S3. Enables local dev without an AWS account."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def store_config(self) -> StoreConfig:
        """Build the StoreConfig for an S3DataStore."""
        return StoreConfig(
            bucket_name=self.s3_bucket_name,
            access_key_id=self.s3_access_key_id,
            secret_access_key=self.s3_secret_access_key,
            region=self.s3_region,
            storage_headers=dict(self.s3_storage_headers),
            url_scheme=self.s3_url_scheme,
            url_host=self.s3_url_host,
            use_iam_profile=self.s3_use_iam_profile,
            root_path=self.s3_root_path,
            backend_extra_options=dict(self.s3_backend_extra_options),
            sync_clock_on_init=self.s3_sync_clock_on_init,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set for the selected mode.

        Returns list of missing required environment variables. This is
        separate from Pydantic validation because requirements depend on
        mock mode and IAM-profile mode. The data store enforces the same
        rules itself on first use; this lets an application report
        problems at startup instead.
        """
        missing = []

        if self.s3_mock_mode:
            return missing

        if not self.s3_bucket_name:
            missing.append("S3_BUCKET_NAME")

        if not self.s3_use_iam_profile:
            if not self.s3_access_key_id:
                missing.append("S3_ACCESS_KEY_ID")
            if not self.s3_secret_access_key:
                missing.append("S3_SECRET_ACCESS_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    For tests, call get_settings.cache_clear() to reset.
    """
    return Settings()
