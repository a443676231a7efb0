# ABOUTME: Attachment storage backed by a Google Cloud Storage bucket.
# ABOUTME: Persists uploaded newsletter files and signs time-limited download URLs.

import secrets
import time
from datetime import timedelta

import structlog
from google.cloud import storage

from portfolio_newsletter.errors import ConfigError, StoreError

log = structlog.get_logger()


def build_storage_path(filename: str) -> str:
    """Unique object name for an uploaded attachment."""
    millis = int(time.time() * 1000)
    return f"{millis}-{secrets.token_hex(8)}-{filename}"


def _open_bucket(bucket_name: str) -> storage.Bucket | None:
    try:
        bucket = storage.Client().bucket(bucket_name)
    except Exception as e:
        log.warning("attachment_bucket_unavailable", bucket=bucket_name, error=str(e))
        return None
    log.info("attachment_bucket_ready", bucket=bucket_name)
    return bucket


class StorageService:
    """Newsletter attachments in GCS. Without a bucket every call is a no-op or ConfigError."""

    def __init__(self, bucket_name: str | None = None):
        self.bucket_name = bucket_name
        self._bucket = _open_bucket(bucket_name) if bucket_name else None

    @property
    def is_enabled(self) -> bool:
        return self._bucket is not None

    def _blob(self, object_name: str) -> storage.Blob:
        return self._bucket.blob(object_name)

    def upload_bytes(self, content: bytes, object_name: str, content_type: str) -> str:
        """Store an attachment and return its gs:// URI.

        Raises:
            ConfigError: No bucket is configured.
            StoreError: The upload was rejected.
        """
        if not self.is_enabled:
            raise ConfigError("Missing GCS_BUCKET env var.")

        try:
            self._blob(object_name).upload_from_string(content, content_type=content_type)
        except Exception as e:
            log.error("attachment_upload_failed", object=object_name, error=str(e))
            raise StoreError(str(e)) from e

        log.info("attachment_uploaded", object=object_name, size=len(content))
        return f"gs://{self.bucket_name}/{object_name}"

    def signed_url(self, object_name: str, ttl: timedelta) -> str | None:
        """V4 signed GET URL, or None when storage is off or signing fails."""
        if not self.is_enabled:
            return None

        try:
            return self._blob(object_name).generate_signed_url(
                version="v4", expiration=ttl, method="GET"
            )
        except Exception as e:
            log.warning("attachment_sign_failed", object=object_name, error=str(e))
            return None
