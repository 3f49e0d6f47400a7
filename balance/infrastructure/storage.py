"""
S3-compatible object storage for statement PDFs.

Works against AWS S3 or any S3-compatible endpoint (MinIO, R2, localstack)
via AWS_S3_ENDPOINT. Timeouts and retries are bounded in the botocore
client config ("standard" retry mode: exponential backoff with jitter on
throttling, 5xx and connection errors).

Every failure leaves this module as a ``StorageError`` whose message is a
caller-safe classification; full detail only goes to the log.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Any

import boto3
from botocore.client import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from balance.config import Settings
from balance.errors import StorageError
from balance.observability.logging import get_logger
from balance.observability.telemetry import counter, time_block

logger = get_logger(__name__)

BUCKET_NOT_FOUND = "Storage bucket not found."
CREDENTIALS_INVALID = "Storage credentials are invalid."
REGION_MISMATCH = "Storage region mismatch."
NETWORK_UNREACHABLE = "Storage service is unreachable."
UPLOAD_FAILED = "Failed to upload file to storage."

_BUCKET_CODES = frozenset({"NoSuchBucket"})
_CREDENTIAL_CODES = frozenset(
    {"InvalidAccessKeyId", "SignatureDoesNotMatch", "AccessDenied", "InvalidToken", "ExpiredToken"}
)
_REGION_CODES = frozenset(
    {"PermanentRedirect", "AuthorizationHeaderMalformed", "IllegalLocationConstraintException"}
)


@dataclass(frozen=True)
class StoredObject:
    body: bytes
    content_type: str | None


def classify_storage_error(exc: BaseException) -> tuple[str, str]:
    """
    Map a botocore failure onto (code, caller-safe message).

    HeadBucket errors carry only the HTTP status, so 404/403/301 are mapped
    the same way as their named equivalents.
    """
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return "network_unreachable", NETWORK_UNREACHABLE
    if isinstance(exc, NoCredentialsError):
        return "credentials_invalid", CREDENTIALS_INVALID
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _BUCKET_CODES or (code == "404" and status == 404):
            return "bucket_not_found", BUCKET_NOT_FOUND
        if code in _CREDENTIAL_CODES or code == "403":
            return "credentials_invalid", CREDENTIALS_INVALID
        if code in _REGION_CODES or code == "301":
            return "region_mismatch", REGION_MISMATCH
    return "upload_failed", UPLOAD_FAILED


class ObjectStorage:
    """Thin wrapper around a boto3 S3 client."""

    def __init__(self, settings: Settings) -> None:
        self.bucket = settings.s3_bucket_name
        self._settings = settings
        self._client: Any = None
        self._client_lock = Lock()

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        with self._client_lock:
            if self._client is None:
                settings = self._settings
                config = Config(
                    signature_version="s3v4",
                    connect_timeout=settings.storage_timeout_seconds,
                    read_timeout=settings.storage_timeout_seconds,
                    retries={"max_attempts": settings.storage_max_attempts, "mode": "standard"},
                    s3={"addressing_style": "path" if settings.s3_force_path_style else "auto"},
                )
                session = boto3.session.Session()
                self._client = session.client(
                    "s3",
                    region_name=settings.aws_region,
                    endpoint_url=settings.s3_endpoint,
                    aws_access_key_id=settings.aws_access_key_id,
                    aws_secret_access_key=settings.aws_secret_access_key,
                    config=config,
                )
                if settings.s3_endpoint:
                    logger.info("Using custom S3 endpoint: %s", settings.s3_endpoint)
        return self._client

    def _fail(self, operation: str, key: str | None, exc: BaseException) -> StorageError:
        code, message = classify_storage_error(exc)
        logger.error(
            "Storage %s failed (bucket=%s key=%s code=%s): %s",
            operation,
            self.bucket,
            key,
            code,
            exc,
        )
        counter(f"storage.{operation}.failed")
        return StorageError(message, code=code)

    def put_object(self, key: str, body: bytes, content_type: str) -> None:
        """
        Raises:
            StorageError: classified failure
        """
        try:
            with time_block("storage.put_object"):
                self._get_client().put_object(
                    Bucket=self.bucket, Key=key, Body=body, ContentType=content_type
                )
        except (BotoCoreError, ClientError) as e:
            raise self._fail("put_object", key, e) from e

    def delete_object(self, key: str, bucket: str | None = None) -> None:
        """
        Raises:
            StorageError: classified failure
        """
        try:
            self._get_client().delete_object(Bucket=bucket or self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise self._fail("delete_object", key, e) from e

    def get_object(self, key: str, bucket: str | None = None) -> StoredObject:
        """
        Raises:
            StorageError: classified failure
        """
        try:
            response = self._get_client().get_object(Bucket=bucket or self.bucket, Key=key)
            body = response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise self._fail("get_object", key, e) from e
        return StoredObject(body=body, content_type=response.get("ContentType"))

    def verify_bucket(self) -> None:
        """
        HeadBucket, used at startup to fail fast on bad storage config.

        Raises:
            StorageError: classified failure
        """
        try:
            self._get_client().head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as e:
            raise self._fail("head_bucket", None, e) from e
        logger.info("Storage bucket %s is reachable", self.bucket)
