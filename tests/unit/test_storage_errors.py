"""Unit tests for object-storage error classification"""

from __future__ import annotations

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from balance.infrastructure.storage import (
    BUCKET_NOT_FOUND,
    CREDENTIALS_INVALID,
    NETWORK_UNREACHABLE,
    REGION_MISMATCH,
    UPLOAD_FAILED,
    classify_storage_error,
)


def _client_error(code: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": "boom"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "PutObject",
    )


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (_client_error("NoSuchBucket", 404), BUCKET_NOT_FOUND),
        (_client_error("404", 404), BUCKET_NOT_FOUND),
        (_client_error("InvalidAccessKeyId", 403), CREDENTIALS_INVALID),
        (_client_error("SignatureDoesNotMatch", 403), CREDENTIALS_INVALID),
        (_client_error("403", 403), CREDENTIALS_INVALID),
        (_client_error("PermanentRedirect", 301), REGION_MISMATCH),
        (_client_error("AuthorizationHeaderMalformed"), REGION_MISMATCH),
        (_client_error("InternalError", 500), UPLOAD_FAILED),
        (EndpointConnectionError(endpoint_url="http://minio:9000"), NETWORK_UNREACHABLE),
        (NoCredentialsError(), CREDENTIALS_INVALID),
    ],
)
def test_classify_storage_error(exc, expected):
    _, message = classify_storage_error(exc)

    assert message == expected


def test_unrecognized_exception_is_generic_upload_failure():
    assert classify_storage_error(RuntimeError("?")) == ("upload_failed", UPLOAD_FAILED)
