"""
Data-driven classification tables.

Each provider gets an ordered list of `ClassificationRule`s. The first matching rule wins. Rules that look at
structured fields (HTTP status, provider error code, error reason, exception class) come before rules that fall
back to substring matching on the message, so free-text matching only decides when nothing structured does.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

import aiohttp

from app.constants.errors import CloudStorageErrorType as ET
from app.exceptions import ProviderError


@dataclass(frozen=True)
class ErrorDetails:
    """Provider-neutral view of a raised error."""

    message: str = ""
    status: int | None = None
    code: str | None = None
    reason: str | None = None
    retry_after: int | None = None
    is_timeout: bool = False
    is_connection_error: bool = False

    @property
    def text(self) -> str:
        return self.message.lower()

    @classmethod
    def from_error(cls, error: BaseException | str | None) -> "ErrorDetails":
        if error is None:
            return cls()
        if isinstance(error, str):
            return cls(message=error)

        if isinstance(error, ProviderError):
            return cls(
                message=error.message,
                status=error.http_status,
                code=error.code,
                reason=error.reason,
                retry_after=error.retry_after,
            )

        status, code, reason = _sdk_fields(error)
        return cls(
            message=str(error) or type(error).__name__,
            status=status,
            code=code,
            reason=reason,
            retry_after=_as_int(getattr(error, "retry_after", None)),
            is_timeout=isinstance(error, (asyncio.TimeoutError, TimeoutError, aiohttp.ServerTimeoutError)),
            is_connection_error=isinstance(error, (ConnectionError, aiohttp.ClientConnectionError)),
        )


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _sdk_fields(error: BaseException) -> tuple[int | None, str | None, str | None]:
    """Duck-type the structured fields that common SDK exceptions expose."""
    status = _as_int(getattr(error, "status", None)) or _as_int(getattr(error, "status_code", None))
    code = getattr(error, "code", None)
    reason = getattr(error, "reason", None)

    # googleapiclient-style: error.resp.status, error.error_details[0]["reason"]
    resp = getattr(error, "resp", None)
    if status is None and resp is not None:
        status = _as_int(getattr(resp, "status", None))
    error_details = getattr(error, "error_details", None)
    if isinstance(error_details, list) and error_details and isinstance(error_details[0], dict):
        reason = error_details[0].get("reason", reason)

    # botocore-style: error.response["Error"]["Code"], error.response["ResponseMetadata"]["HTTPStatusCode"]
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code", code)
        status = status or _as_int(response.get("ResponseMetadata", {}).get("HTTPStatusCode"))

    return status, code if isinstance(code, str) else None, reason if isinstance(reason, str) else None


Predicate = Callable[[ErrorDetails], bool]


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    predicate: Predicate
    error_type: ET

    def matches(self, details: ErrorDetails) -> bool:
        return self.predicate(details)


def status_is(*statuses: int) -> Predicate:
    return lambda d: d.status in statuses


def code_is(*codes: str) -> Predicate:
    return lambda d: d.code in codes


def reason_is(*reasons: str) -> Predicate:
    return lambda d: d.reason in reasons


def message_contains(*needles: str) -> Predicate:
    return lambda d: any(needle in d.text for needle in needles)


def all_of(*predicates: Predicate) -> Predicate:
    return lambda d: all(p(d) for p in predicates)


def is_timeout(d: ErrorDetails) -> bool:
    return d.is_timeout


def is_connection_error(d: ErrorDetails) -> bool:
    return d.is_connection_error


GENERIC_RULES: list[ClassificationRule] = [
    ClassificationRule("timeout_exception", is_timeout, ET.TIMEOUT),
    ClassificationRule("connection_exception", is_connection_error, ET.NETWORK_ERROR),
    ClassificationRule("http_401", status_is(401), ET.TOKEN_EXPIRED),
    ClassificationRule("http_403", status_is(403), ET.INSUFFICIENT_PERMISSIONS),
    ClassificationRule("http_404", status_is(404), ET.FILE_NOT_FOUND),
    ClassificationRule("http_408", status_is(408), ET.TIMEOUT),
    ClassificationRule("http_413", status_is(413), ET.FILE_TOO_LARGE),
    ClassificationRule("http_429", status_is(429), ET.API_QUOTA_EXCEEDED),
    ClassificationRule("http_501", status_is(501), ET.FEATURE_NOT_SUPPORTED),
    ClassificationRule("http_5xx", status_is(500, 502, 503, 504), ET.SERVICE_UNAVAILABLE),
    # Message fallbacks; order matters ("token refresh rate limit" before "rate limit").
    ClassificationRule(
        "msg_refresh_rate_limited",
        message_contains("too many token refresh", "token refresh rate limit", "refresh rate limited"),
        ET.TOKEN_REFRESH_RATE_LIMITED,
    ),
    ClassificationRule(
        "msg_token_expired",
        message_contains("invalid_grant", "token expired", "expired token", "token has expired", "unauthenticated"),
        ET.TOKEN_EXPIRED,
    ),
    ClassificationRule(
        "msg_invalid_credentials",
        message_contains("invalid_client", "invalid credentials", "unauthorized_client"),
        ET.INVALID_CREDENTIALS,
    ),
    ClassificationRule(
        "msg_storage_quota",
        message_contains("storage quota", "storage full", "insufficient storage"),
        ET.STORAGE_QUOTA_EXCEEDED,
    ),
    ClassificationRule(
        "msg_api_quota",
        message_contains("rate limit", "quota", "too many requests"),
        ET.API_QUOTA_EXCEEDED,
    ),
    ClassificationRule(
        "msg_permissions",
        message_contains("insufficient permission", "permission denied", "forbidden", "access denied"),
        ET.INSUFFICIENT_PERMISSIONS,
    ),
    ClassificationRule("msg_timeout", message_contains("timed out", "timeout"), ET.TIMEOUT),
    ClassificationRule(
        "msg_service_unavailable",
        message_contains("service unavailable", "temporarily unavailable", "503", "backend error"),
        ET.SERVICE_UNAVAILABLE,
    ),
    ClassificationRule(
        "msg_network",
        message_contains("connection", "network", "dns", "resolve", "unreachable"),
        ET.NETWORK_ERROR,
    ),
    ClassificationRule("msg_not_found", message_contains("not found"), ET.FILE_NOT_FOUND),
    ClassificationRule(
        "msg_not_supported", message_contains("not supported", "not implemented"), ET.FEATURE_NOT_SUPPORTED
    ),
]


GOOGLE_DRIVE_RULES: list[ClassificationRule] = [
    ClassificationRule(
        "drive_401_bad_client",
        all_of(status_is(401), message_contains("credentials", "client")),
        ET.INVALID_CREDENTIALS,
    ),
    ClassificationRule("drive_auth_error", reason_is("authError"), ET.TOKEN_EXPIRED),
    ClassificationRule("drive_401", status_is(401), ET.TOKEN_EXPIRED),
    ClassificationRule(
        "drive_insufficient_permissions", reason_is("insufficientPermissions"), ET.INSUFFICIENT_PERMISSIONS
    ),
    ClassificationRule("drive_storage_quota", reason_is("storageQuotaExceeded"), ET.STORAGE_QUOTA_EXCEEDED),
    ClassificationRule(
        "drive_rate_limit",
        reason_is("quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded", "dailyLimitExceeded"),
        ET.API_QUOTA_EXCEEDED,
    ),
    ClassificationRule(
        "drive_403_storage", all_of(status_is(403), message_contains("storage quota")), ET.STORAGE_QUOTA_EXCEEDED
    ),
    ClassificationRule(
        "drive_403_rate_limit",
        all_of(status_is(403), message_contains("rate limit", "quota")),
        ET.API_QUOTA_EXCEEDED,
    ),
    ClassificationRule("drive_403_folder", all_of(status_is(403), message_contains("folder")), ET.FOLDER_ACCESS_DENIED),
    ClassificationRule("drive_403", status_is(403), ET.INSUFFICIENT_PERMISSIONS),
    ClassificationRule("drive_not_found", reason_is("notFound"), ET.FILE_NOT_FOUND),
    ClassificationRule("drive_404", status_is(404), ET.FILE_NOT_FOUND),
    ClassificationRule("drive_413", status_is(413), ET.FILE_TOO_LARGE),
    ClassificationRule("drive_429", status_is(429), ET.API_QUOTA_EXCEEDED),
    ClassificationRule(
        "drive_backend", reason_is("backendError", "internalError", "serviceUnavailable"), ET.SERVICE_UNAVAILABLE
    ),
    ClassificationRule("drive_5xx", status_is(500, 502, 503, 504), ET.SERVICE_UNAVAILABLE),
]


S3_RULES: list[ClassificationRule] = [
    ClassificationRule("s3_no_such_bucket", code_is("NoSuchBucket"), ET.BUCKET_NOT_FOUND),
    ClassificationRule("s3_invalid_bucket_name", code_is("InvalidBucketName"), ET.INVALID_BUCKET_NAME),
    ClassificationRule("s3_bucket_not_empty", code_is("BucketNotEmpty"), ET.BUCKET_ACCESS_DENIED),
    ClassificationRule(
        "s3_bucket_access_denied",
        all_of(code_is("AccessDenied", "AllAccessDisabled"), message_contains("bucket")),
        ET.BUCKET_ACCESS_DENIED,
    ),
    ClassificationRule(
        "s3_access_denied",
        code_is("AccessDenied", "AllAccessDisabled", "UnauthorizedOperation"),
        ET.INSUFFICIENT_PERMISSIONS,
    ),
    ClassificationRule(
        "s3_bad_credentials",
        code_is("InvalidAccessKeyId", "SignatureDoesNotMatch", "TokenRefreshRequired"),
        ET.INVALID_CREDENTIALS,
    ),
    ClassificationRule("s3_expired_token", code_is("ExpiredToken", "ExpiredTokenException"), ET.TOKEN_EXPIRED),
    ClassificationRule("s3_no_such_key", code_is("NoSuchKey"), ET.FILE_NOT_FOUND),
    ClassificationRule("s3_entity_too_large", code_is("EntityTooLarge"), ET.FILE_TOO_LARGE),
    ClassificationRule(
        "s3_invalid_storage_class",
        all_of(code_is("InvalidRequest", "InvalidStorageClass"), message_contains("storage class")),
        ET.STORAGE_CLASS_NOT_SUPPORTED,
    ),
    ClassificationRule("s3_invalid_request", code_is("InvalidRequest", "InvalidArgument"), ET.INVALID_PARAMETER),
    ClassificationRule(
        "s3_throttled",
        code_is("SlowDown", "RequestTimeTooSkewed", "RequestLimitExceeded", "Throttling", "ThrottlingException"),
        ET.API_QUOTA_EXCEEDED,
    ),
    ClassificationRule(
        "s3_service", code_is("ServiceUnavailable", "InternalError", "InternalFailure"), ET.SERVICE_UNAVAILABLE
    ),
    ClassificationRule(
        "s3_region",
        code_is("InvalidRegion", "AuthorizationHeaderMalformed", "PermanentRedirect", "InvalidParameterValue"),
        ET.INVALID_REGION,
    ),
    ClassificationRule("s3_not_implemented", code_is("NotImplemented"), ET.FEATURE_NOT_SUPPORTED),
    ClassificationRule("s3_request_timeout", code_is("RequestTimeout"), ET.NETWORK_ERROR),
    ClassificationRule("s3_401", status_is(401), ET.INVALID_CREDENTIALS),
    ClassificationRule("s3_403", status_is(403), ET.INSUFFICIENT_PERMISSIONS),
    ClassificationRule("s3_404", status_is(404), ET.FILE_NOT_FOUND),
    ClassificationRule("s3_413", status_is(413), ET.FILE_TOO_LARGE),
    ClassificationRule("s3_429", status_is(429), ET.API_QUOTA_EXCEEDED),
    ClassificationRule("s3_5xx", status_is(500, 502, 503, 504), ET.SERVICE_UNAVAILABLE),
]
