from enum import Enum


class ErrorSeverity(Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class CloudStorageErrorType(Enum):
    """Closed taxonomy every provider failure is classified into."""

    TOKEN_EXPIRED = "token_expired"
    TOKEN_REFRESH_RATE_LIMITED = "token_refresh_rate_limited"
    INVALID_CREDENTIALS = "invalid_credentials"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    API_QUOTA_EXCEEDED = "api_quota_exceeded"
    STORAGE_QUOTA_EXCEEDED = "storage_quota_exceeded"
    NETWORK_ERROR = "network_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    FILE_NOT_FOUND = "file_not_found"
    FOLDER_ACCESS_DENIED = "folder_access_denied"
    INVALID_FILE_TYPE = "invalid_file_type"
    FILE_TOO_LARGE = "file_too_large"
    INVALID_FILE_CONTENT = "invalid_file_content"
    FEATURE_NOT_SUPPORTED = "feature_not_supported"
    PROVIDER_NOT_CONFIGURED = "provider_not_configured"
    PROVIDER_INITIALIZATION_FAILED = "provider_initialization_failed"
    BUCKET_NOT_FOUND = "bucket_not_found"
    INVALID_BUCKET_NAME = "invalid_bucket_name"
    BUCKET_ACCESS_DENIED = "bucket_access_denied"
    INVALID_REGION = "invalid_region"
    STORAGE_CLASS_NOT_SUPPORTED = "storage_class_not_supported"
    INVALID_PARAMETER = "invalid_parameter"
    UNKNOWN_ERROR = "unknown_error"

    @classmethod
    def from_value(cls, value: "CloudStorageErrorType | str | None") -> "CloudStorageErrorType | None":
        """Accept an enum member, its value or its name; unknown strings map to None."""
        if value is None or isinstance(value, CloudStorageErrorType):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.__members__.get(value.upper())

    @classmethod
    def recoverable(cls) -> list["CloudStorageErrorType"]:
        return [member for member in cls if member.is_recoverable]

    @property
    def is_recoverable(self) -> bool:
        return self in _RECOVERABLE

    @property
    def requires_user_intervention(self) -> bool:
        return self in _USER_INTERVENTION

    @property
    def max_retry_attempts(self) -> int:
        return _MAX_RETRY_ATTEMPTS.get(self, 0)

    @property
    def base_retry_delay(self) -> int:
        """Delay in seconds before the first retry."""
        return _BASE_RETRY_DELAY.get(self, 30)

    @property
    def severity(self) -> ErrorSeverity:
        return _SEVERITY.get(self, ErrorSeverity.medium)

    @property
    def description(self) -> str:
        return self.value.replace("_", " ").capitalize()

    def should_retry(self, attempt_count: int) -> bool:
        return self.is_recoverable and attempt_count < self.max_retry_attempts

    def retry_delay(self, attempt_count: int, retry_after: int | None = None) -> int:
        """Seconds to wait before retry number `attempt_count` (1-based)."""
        attempt_count = max(1, attempt_count)
        if self in (CloudStorageErrorType.API_QUOTA_EXCEEDED, CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED):
            return int(retry_after) if retry_after else self.base_retry_delay
        if self == CloudStorageErrorType.NETWORK_ERROR:
            return min(30, 30 * 2 ** (attempt_count - 1))
        if self == CloudStorageErrorType.SERVICE_UNAVAILABLE:
            return min(1800, 60 * 2 ** (attempt_count - 1))
        if self == CloudStorageErrorType.TIMEOUT:
            return min(300, 60 * attempt_count)
        return min(300, 30 * attempt_count)


_RECOVERABLE = frozenset(
    {
        CloudStorageErrorType.TOKEN_EXPIRED,
        CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED,
        CloudStorageErrorType.API_QUOTA_EXCEEDED,
        CloudStorageErrorType.NETWORK_ERROR,
        CloudStorageErrorType.SERVICE_UNAVAILABLE,
        CloudStorageErrorType.TIMEOUT,
        CloudStorageErrorType.UNKNOWN_ERROR,
    }
)

_USER_INTERVENTION = frozenset(
    {
        CloudStorageErrorType.INVALID_CREDENTIALS,
        CloudStorageErrorType.INSUFFICIENT_PERMISSIONS,
        CloudStorageErrorType.STORAGE_QUOTA_EXCEEDED,
        CloudStorageErrorType.INVALID_FILE_TYPE,
        CloudStorageErrorType.FILE_TOO_LARGE,
        CloudStorageErrorType.INVALID_FILE_CONTENT,
        CloudStorageErrorType.FOLDER_ACCESS_DENIED,
        CloudStorageErrorType.PROVIDER_NOT_CONFIGURED,
        CloudStorageErrorType.FEATURE_NOT_SUPPORTED,
        CloudStorageErrorType.BUCKET_NOT_FOUND,
        CloudStorageErrorType.INVALID_BUCKET_NAME,
        CloudStorageErrorType.BUCKET_ACCESS_DENIED,
        CloudStorageErrorType.INVALID_REGION,
    }
)

_MAX_RETRY_ATTEMPTS = {
    CloudStorageErrorType.NETWORK_ERROR: 3,
    CloudStorageErrorType.SERVICE_UNAVAILABLE: 3,
    CloudStorageErrorType.TIMEOUT: 3,
    CloudStorageErrorType.API_QUOTA_EXCEEDED: 3,
    CloudStorageErrorType.TOKEN_EXPIRED: 1,
    CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED: 1,
    CloudStorageErrorType.UNKNOWN_ERROR: 1,
}

_BASE_RETRY_DELAY = {
    CloudStorageErrorType.API_QUOTA_EXCEEDED: 600,
    CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED: 300,
    CloudStorageErrorType.NETWORK_ERROR: 30,
    CloudStorageErrorType.SERVICE_UNAVAILABLE: 60,
    CloudStorageErrorType.TIMEOUT: 60,
    CloudStorageErrorType.TOKEN_EXPIRED: 0,
}

_SEVERITY = {
    CloudStorageErrorType.TOKEN_EXPIRED: ErrorSeverity.high,
    CloudStorageErrorType.INVALID_CREDENTIALS: ErrorSeverity.critical,
    CloudStorageErrorType.INSUFFICIENT_PERMISSIONS: ErrorSeverity.high,
    CloudStorageErrorType.STORAGE_QUOTA_EXCEEDED: ErrorSeverity.high,
    CloudStorageErrorType.PROVIDER_NOT_CONFIGURED: ErrorSeverity.critical,
    CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED: ErrorSeverity.medium,
    CloudStorageErrorType.API_QUOTA_EXCEEDED: ErrorSeverity.medium,
    CloudStorageErrorType.NETWORK_ERROR: ErrorSeverity.low,
    CloudStorageErrorType.TIMEOUT: ErrorSeverity.low,
    CloudStorageErrorType.SERVICE_UNAVAILABLE: ErrorSeverity.medium,
}

# Error types that leave a connection unusable until the user reconnects.
HARD_FAILURE_ERROR_TYPES = frozenset(
    {
        CloudStorageErrorType.TOKEN_EXPIRED,
        CloudStorageErrorType.INVALID_CREDENTIALS,
        CloudStorageErrorType.INSUFFICIENT_PERMISSIONS,
    }
)


class TokenRefreshErrorType(Enum):
    NETWORK_TIMEOUT = "network_timeout"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    EXPIRED_REFRESH_TOKEN = "expired_refresh_token"
    API_QUOTA_EXCEEDED = "api_quota_exceeded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNKNOWN_ERROR = "unknown_error"

    @property
    def is_recoverable(self) -> bool:
        return self in (
            TokenRefreshErrorType.NETWORK_TIMEOUT,
            TokenRefreshErrorType.API_QUOTA_EXCEEDED,
            TokenRefreshErrorType.SERVICE_UNAVAILABLE,
        )

    @property
    def requires_user_intervention(self) -> bool:
        return self in (TokenRefreshErrorType.INVALID_REFRESH_TOKEN, TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN)

    @property
    def should_notify_immediately(self) -> bool:
        return self.requires_user_intervention

    @property
    def max_retry_attempts(self) -> int:
        if self == TokenRefreshErrorType.NETWORK_TIMEOUT:
            return 5
        if self in (TokenRefreshErrorType.API_QUOTA_EXCEEDED, TokenRefreshErrorType.SERVICE_UNAVAILABLE):
            return 3
        return 0

    @property
    def severity(self) -> ErrorSeverity:
        if self.requires_user_intervention:
            return ErrorSeverity.critical
        if self == TokenRefreshErrorType.API_QUOTA_EXCEEDED:
            return ErrorSeverity.medium
        return ErrorSeverity.low

    def retry_delay(self, attempt_count: int) -> int:
        attempt_count = max(1, attempt_count)
        if self == TokenRefreshErrorType.NETWORK_TIMEOUT:
            return min(2 ** (attempt_count - 1), 16)
        if self == TokenRefreshErrorType.API_QUOTA_EXCEEDED:
            return 3600
        if self == TokenRefreshErrorType.SERVICE_UNAVAILABLE:
            return min(60 * attempt_count, 300)
        return 0
