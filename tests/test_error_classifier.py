import asyncio

import pytest

from app.constants.errors import CloudStorageErrorType as ET
from app.constants.errors import TokenRefreshErrorType
from app.constants.providers import AMAZON_S3, GOOGLE_DRIVE
from app.controllers.errors.classifier import (
    ErrorClassifier,
    classify_refresh_error,
    to_cloud_storage_error,
    to_token_error,
)
from app.controllers.errors.rules import ClassificationRule, ErrorDetails
from app.exceptions import ProviderError


class BotoStyleError(Exception):
    def __init__(self, code: str, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.response = {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"HTTPStatusCode": status}}


class _Resp:
    def __init__(self, status: int) -> None:
        self.status = status


class GoogleStyleError(Exception):
    def __init__(self, status: int, reason: str, message: str = "request failed") -> None:
        super().__init__(message)
        self.resp = _Resp(status)
        self.error_details = [{"reason": reason, "message": message}]


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


@pytest.mark.parametrize(
    "error, expected",
    [
        (ProviderError("unauthorized", http_status=401), ET.TOKEN_EXPIRED),
        (ProviderError("forbidden", http_status=403), ET.INSUFFICIENT_PERMISSIONS),
        (ProviderError("slow down", http_status=429), ET.API_QUOTA_EXCEEDED),
        (ProviderError("bad gateway", http_status=502), ET.SERVICE_UNAVAILABLE),
        (ProviderError("not implemented", http_status=501), ET.FEATURE_NOT_SUPPORTED),
        (asyncio.TimeoutError(), ET.TIMEOUT),
        (ConnectionResetError("peer reset"), ET.NETWORK_ERROR),
        ("Too many token refresh attempts", ET.TOKEN_REFRESH_RATE_LIMITED),
        ("Rate limit exceeded for this user", ET.API_QUOTA_EXCEEDED),
        ("The user's storage quota has been exceeded", ET.STORAGE_QUOTA_EXCEEDED),
        ("Service Unavailable", ET.SERVICE_UNAVAILABLE),
        ("Permission denied on resource", ET.INSUFFICIENT_PERMISSIONS),
        ("something odd happened", ET.UNKNOWN_ERROR),
        (None, ET.UNKNOWN_ERROR),
    ],
)
def test_generic_classification(classifier: ErrorClassifier, error, expected: ET) -> None:
    assert classifier.classify(error) == expected


def test_structured_status_wins_over_message(classifier: ErrorClassifier) -> None:
    # The message mentions a network problem but the HTTP status says quota.
    error = ProviderError("network hiccup while talking to the API", http_status=429)
    assert classifier.classify(error) == ET.API_QUOTA_EXCEEDED


@pytest.mark.parametrize(
    "error, expected",
    [
        (GoogleStyleError(403, "storageQuotaExceeded"), ET.STORAGE_QUOTA_EXCEEDED),
        (GoogleStyleError(403, "userRateLimitExceeded"), ET.API_QUOTA_EXCEEDED),
        (GoogleStyleError(403, "insufficientPermissions"), ET.INSUFFICIENT_PERMISSIONS),
        (GoogleStyleError(404, "notFound"), ET.FILE_NOT_FOUND),
        (GoogleStyleError(500, "backendError"), ET.SERVICE_UNAVAILABLE),
        (ProviderError("Invalid Credentials", http_status=401), ET.INVALID_CREDENTIALS),
        (ProviderError("Request had invalid authentication", http_status=401), ET.TOKEN_EXPIRED),
        (ProviderError("Access to folder denied", http_status=403), ET.FOLDER_ACCESS_DENIED),
    ],
)
def test_google_drive_classification(classifier: ErrorClassifier, error, expected: ET) -> None:
    assert classifier.classify(error, GOOGLE_DRIVE) == expected


@pytest.mark.parametrize(
    "error, expected",
    [
        (BotoStyleError("NoSuchBucket", "The specified bucket does not exist", 404), ET.BUCKET_NOT_FOUND),
        (BotoStyleError("InvalidBucketName", "The specified bucket is not valid"), ET.INVALID_BUCKET_NAME),
        (BotoStyleError("AccessDenied", "Access Denied", 403), ET.INSUFFICIENT_PERMISSIONS),
        (BotoStyleError("InvalidAccessKeyId", "key does not exist", 403), ET.INVALID_CREDENTIALS),
        (BotoStyleError("ExpiredToken", "The provided token has expired", 400), ET.TOKEN_EXPIRED),
        (BotoStyleError("SlowDown", "Please reduce your request rate", 503), ET.API_QUOTA_EXCEEDED),
        (BotoStyleError("NoSuchKey", "The specified key does not exist", 404), ET.FILE_NOT_FOUND),
        (BotoStyleError("EntityTooLarge", "Your proposed upload exceeds the maximum"), ET.FILE_TOO_LARGE),
        (BotoStyleError("InvalidRegion", "region is wrong"), ET.INVALID_REGION),
    ],
)
def test_s3_classification(classifier: ErrorClassifier, error, expected: ET) -> None:
    assert classifier.classify(error, AMAZON_S3) == expected


def test_provider_rules_do_not_leak_to_other_providers(classifier: ErrorClassifier) -> None:
    error = BotoStyleError("NoSuchBucket", "missing", 404)
    assert classifier.classify(error, GOOGLE_DRIVE) == ET.FILE_NOT_FOUND


def test_error_details_reads_sdk_fields() -> None:
    details = ErrorDetails.from_error(BotoStyleError("SlowDown", "reduce rate", 503))
    assert details.code == "SlowDown"
    assert details.status == 503

    details = ErrorDetails.from_error(GoogleStyleError(403, "quotaExceeded"))
    assert details.status == 403
    assert details.reason == "quotaExceeded"


def test_classifier_never_raises() -> None:
    def explode(details: ErrorDetails) -> bool:
        raise RuntimeError("broken rule")

    classifier = ErrorClassifier(provider_rules={}, generic_rules=[ClassificationRule("broken", explode, ET.TIMEOUT)])
    assert classifier.classify(ValueError("anything")) == ET.UNKNOWN_ERROR


def test_custom_rule_tables_are_honoured() -> None:
    rules = [ClassificationRule("teapot", lambda d: d.status == 418, ET.FEATURE_NOT_SUPPORTED)]
    classifier = ErrorClassifier(provider_rules={"teapot-cloud": rules})
    assert classifier.classify(ProviderError("short and stout", http_status=418), "teapot-cloud") == (
        ET.FEATURE_NOT_SUPPORTED
    )


@pytest.mark.parametrize(
    "error, expected",
    [
        (Exception("invalid_grant: Token has been expired or revoked."), TokenRefreshErrorType.INVALID_REFRESH_TOKEN),
        (Exception("Refresh token expired"), TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN),
        (Exception("The refresh token is invalid"), TokenRefreshErrorType.INVALID_REFRESH_TOKEN),
        (asyncio.TimeoutError(), TokenRefreshErrorType.NETWORK_TIMEOUT),
        (ConnectionError("connection refused"), TokenRefreshErrorType.NETWORK_TIMEOUT),
        (ProviderError("slow down", http_status=429), TokenRefreshErrorType.API_QUOTA_EXCEEDED),
        (ProviderError("unavailable", http_status=503), TokenRefreshErrorType.SERVICE_UNAVAILABLE),
        (ValueError("weird"), TokenRefreshErrorType.UNKNOWN_ERROR),
    ],
)
def test_classify_refresh_error(error, expected: TokenRefreshErrorType) -> None:
    assert classify_refresh_error(error) == expected


def test_taxonomy_mapping() -> None:
    assert to_token_error(ET.TOKEN_EXPIRED) == TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN
    assert to_token_error(ET.TIMEOUT) == TokenRefreshErrorType.NETWORK_TIMEOUT
    assert to_token_error(ET.FILE_NOT_FOUND) == TokenRefreshErrorType.UNKNOWN_ERROR

    assert to_cloud_storage_error(TokenRefreshErrorType.INVALID_REFRESH_TOKEN) == ET.INVALID_CREDENTIALS
    assert to_cloud_storage_error(TokenRefreshErrorType.NETWORK_TIMEOUT) == ET.NETWORK_ERROR
    for refresh_error_type in TokenRefreshErrorType:
        assert isinstance(to_cloud_storage_error(refresh_error_type), ET)
