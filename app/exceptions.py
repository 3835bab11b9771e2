import enum
from http import HTTPStatus
from typing import Any


class ErrorType(enum.Enum):
    CONFIGURATION = "configuration"
    LOCK_UNAVAILABLE = "lock_unavailable"
    THIRD_PARTY_REQUEST = "third_party_request"
    UNSPECIFIED = "unspecified"


class BaseError(Exception):
    extra: dict[str, Any]

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNSPECIFIED,
        status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.extra = {}

        user_id = kwargs.get("user_id")
        if user_id is not None:
            self.extra["user_id"] = user_id
        provider = kwargs.get("provider")
        if provider:
            self.extra["provider"] = provider

    def __str__(self) -> str:
        return f"error: {self.error_type.value}; description: {self.message}"


class ConfigurationError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.CONFIGURATION,
        status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)


class LockAcquisitionError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.LOCK_UNAVAILABLE,
        status_code: HTTPStatus = HTTPStatus.CONFLICT,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)


class ProviderError(BaseError):
    """Raised by storage provider integrations with the structured details of the failure."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.THIRD_PARTY_REQUEST,
        status_code: HTTPStatus = HTTPStatus.BAD_GATEWAY,
        *,
        http_status: int | None = None,
        code: str | None = None,
        reason: str | None = None,
        retry_after: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)
        self.http_status = http_status
        self.code = code
        self.reason = reason
        self.retry_after = retry_after


class NotificationDeliveryError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.THIRD_PARTY_REQUEST,
        status_code: HTTPStatus = HTTPStatus.BAD_GATEWAY,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)
