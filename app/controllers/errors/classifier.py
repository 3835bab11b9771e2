import logging

from app.constants.errors import CloudStorageErrorType, TokenRefreshErrorType
from app.constants.providers import AMAZON_S3, GOOGLE_DRIVE
from app.controllers.errors.rules import (
    GENERIC_RULES,
    GOOGLE_DRIVE_RULES,
    S3_RULES,
    ClassificationRule,
    ErrorDetails,
    message_contains,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_RULES: dict[str, list[ClassificationRule]] = {
    GOOGLE_DRIVE: GOOGLE_DRIVE_RULES,
    AMAZON_S3: S3_RULES,
}


class ErrorClassifier:
    """Maps any raised error onto the closed CloudStorageErrorType taxonomy."""

    def __init__(
        self,
        provider_rules: dict[str, list[ClassificationRule]] | None = None,
        generic_rules: list[ClassificationRule] | None = None,
    ) -> None:
        self._provider_rules = DEFAULT_PROVIDER_RULES if provider_rules is None else provider_rules
        self._generic_rules = GENERIC_RULES if generic_rules is None else generic_rules

    def classify(self, error: BaseException | str | None, provider: str | None = None) -> CloudStorageErrorType:
        """Provider table first, then the generic table, then UNKNOWN_ERROR. Never raises."""
        try:
            details = ErrorDetails.from_error(error)
            rule = self.match(details, provider)
            return rule.error_type if rule else CloudStorageErrorType.UNKNOWN_ERROR
        except Exception as e:
            logger.warning(f"Error classification failed for {type(error).__name__}: {e}")
            return CloudStorageErrorType.UNKNOWN_ERROR

    def match(self, details: ErrorDetails, provider: str | None = None) -> ClassificationRule | None:
        for rule in self._rules_for(provider):
            if rule.matches(details):
                return rule
        return None

    def _rules_for(self, provider: str | None) -> list[ClassificationRule]:
        return [*self._provider_rules.get(provider or "", []), *self._generic_rules]


# Refresh-specific checks run before the general taxonomy mapping.
REFRESH_ERROR_RULES: list[tuple[str, object, TokenRefreshErrorType]] = [
    ("invalid_grant", message_contains("invalid_grant"), TokenRefreshErrorType.INVALID_REFRESH_TOKEN),
    (
        "expired_refresh_token",
        lambda d: "expired" in d.text and "refresh" in d.text,
        TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN,
    ),
    (
        "revoked_refresh_token",
        message_contains("token has been revoked", "invalid refresh token", "refresh token is invalid"),
        TokenRefreshErrorType.INVALID_REFRESH_TOKEN,
    ),
]

_CLOUD_TO_TOKEN_ERROR = {
    CloudStorageErrorType.TOKEN_EXPIRED: TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN,
    CloudStorageErrorType.INVALID_CREDENTIALS: TokenRefreshErrorType.INVALID_REFRESH_TOKEN,
    CloudStorageErrorType.NETWORK_ERROR: TokenRefreshErrorType.NETWORK_TIMEOUT,
    CloudStorageErrorType.TIMEOUT: TokenRefreshErrorType.NETWORK_TIMEOUT,
    CloudStorageErrorType.API_QUOTA_EXCEEDED: TokenRefreshErrorType.API_QUOTA_EXCEEDED,
    CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED: TokenRefreshErrorType.API_QUOTA_EXCEEDED,
    CloudStorageErrorType.SERVICE_UNAVAILABLE: TokenRefreshErrorType.SERVICE_UNAVAILABLE,
}

_TOKEN_TO_CLOUD_ERROR = {
    TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN: CloudStorageErrorType.TOKEN_EXPIRED,
    TokenRefreshErrorType.INVALID_REFRESH_TOKEN: CloudStorageErrorType.INVALID_CREDENTIALS,
    TokenRefreshErrorType.NETWORK_TIMEOUT: CloudStorageErrorType.NETWORK_ERROR,
    TokenRefreshErrorType.API_QUOTA_EXCEEDED: CloudStorageErrorType.API_QUOTA_EXCEEDED,
    TokenRefreshErrorType.SERVICE_UNAVAILABLE: CloudStorageErrorType.SERVICE_UNAVAILABLE,
    TokenRefreshErrorType.UNKNOWN_ERROR: CloudStorageErrorType.UNKNOWN_ERROR,
}


def to_token_error(error_type: CloudStorageErrorType) -> TokenRefreshErrorType:
    return _CLOUD_TO_TOKEN_ERROR.get(error_type, TokenRefreshErrorType.UNKNOWN_ERROR)


def to_cloud_storage_error(error_type: TokenRefreshErrorType) -> CloudStorageErrorType:
    return _TOKEN_TO_CLOUD_ERROR[error_type]


def classify_refresh_error(
    error: BaseException | str | None,
    provider: str | None = None,
    classifier: ErrorClassifier | None = None,
) -> TokenRefreshErrorType:
    """Classify an error raised by a provider token refresh. Pure and never raises."""
    try:
        details = ErrorDetails.from_error(error)
        for _, predicate, refresh_error_type in REFRESH_ERROR_RULES:
            if predicate(details):  # type: ignore[operator]
                return refresh_error_type
    except Exception as e:
        logger.warning(f"Refresh error classification failed: {e}")
        return TokenRefreshErrorType.UNKNOWN_ERROR

    return to_token_error((classifier or ErrorClassifier()).classify(error, provider))
