import math
from typing import Any

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConsolidatedStatus
from app.constants.providers import provider_display_name

RETRYABLE_ERROR_TYPES = frozenset(
    {
        CloudStorageErrorType.NETWORK_ERROR,
        CloudStorageErrorType.SERVICE_UNAVAILABLE,
        CloudStorageErrorType.TIMEOUT,
        CloudStorageErrorType.API_QUOTA_EXCEEDED,
        CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED,
    }
)

USER_ACTION_ERROR_TYPES = frozenset(
    {
        CloudStorageErrorType.TOKEN_EXPIRED,
        CloudStorageErrorType.INVALID_CREDENTIALS,
        CloudStorageErrorType.INSUFFICIENT_PERMISSIONS,
        CloudStorageErrorType.STORAGE_QUOTA_EXCEEDED,
        CloudStorageErrorType.FOLDER_ACCESS_DENIED,
        CloudStorageErrorType.INVALID_FILE_TYPE,
        CloudStorageErrorType.FILE_TOO_LARGE,
        CloudStorageErrorType.PROVIDER_NOT_CONFIGURED,
    }
)

_ERROR_MESSAGES = {
    CloudStorageErrorType.TOKEN_EXPIRED: (
        "Your {provider} connection has expired. Please reconnect your account to continue."
    ),
    CloudStorageErrorType.INVALID_CREDENTIALS: (
        "Invalid {provider} credentials. Please check your configuration and reconnect your account."
    ),
    CloudStorageErrorType.INSUFFICIENT_PERMISSIONS: (
        "Insufficient {provider} permissions. Please reconnect your account and ensure you grant full access."
    ),
    CloudStorageErrorType.API_QUOTA_EXCEEDED: (
        "{provider} API limit reached. Your operations will resume automatically when the limit resets."
    ),
    CloudStorageErrorType.STORAGE_QUOTA_EXCEEDED: (
        "Your {provider} storage is full. Please free up space or upgrade your storage plan."
    ),
    CloudStorageErrorType.NETWORK_ERROR: (
        "Network connection issue prevented the {provider} operation. "
        "Please check your internet connection and try again."
    ),
    CloudStorageErrorType.SERVICE_UNAVAILABLE: (
        "{provider} is temporarily unavailable. Please try again in a few minutes."
    ),
    CloudStorageErrorType.TIMEOUT: (
        "The {provider} {operation} timed out. This is usually temporary, please try again."
    ),
    CloudStorageErrorType.FILE_NOT_FOUND: (
        "The file '{file_name}' could not be found in {provider}. It may have been deleted or moved."
    ),
    CloudStorageErrorType.FOLDER_ACCESS_DENIED: (
        "Access denied to the {provider} folder. Please check your folder permissions."
    ),
    CloudStorageErrorType.INVALID_FILE_TYPE: (
        "The file type of '{file_name}' is not supported by {provider}. Please try a different file format."
    ),
    CloudStorageErrorType.FILE_TOO_LARGE: (
        "The file '{file_name}' is too large for {provider}. Please reduce the file size and try again."
    ),
    CloudStorageErrorType.INVALID_FILE_CONTENT: (
        "The file '{file_name}' appears to be corrupted. Please try uploading the file again."
    ),
    CloudStorageErrorType.PROVIDER_NOT_CONFIGURED: (
        "{provider} is not properly configured. Please check your settings and try again."
    ),
    CloudStorageErrorType.FEATURE_NOT_SUPPORTED: "This feature is not supported by {provider}.",
    CloudStorageErrorType.BUCKET_NOT_FOUND: (
        "The configured {provider} bucket does not exist. Please check your storage settings."
    ),
    CloudStorageErrorType.INVALID_BUCKET_NAME: (
        "The configured {provider} bucket name is invalid. Please check your storage settings."
    ),
    CloudStorageErrorType.BUCKET_ACCESS_DENIED: (
        "Access to the {provider} bucket was denied. Please check the bucket permissions."
    ),
    CloudStorageErrorType.INVALID_REGION: (
        "The configured {provider} region is invalid. Please check your storage settings."
    ),
    CloudStorageErrorType.UNKNOWN_ERROR: (
        "An unexpected error occurred with {provider}. Please try again or contact support if it persists."
    ),
}

_DEFAULT_ERROR_MESSAGE = "The {provider} {operation} could not be completed. Please try again."

_STATUS_MESSAGES = {
    ConsolidatedStatus.healthy: "Connected and working properly",
    ConsolidatedStatus.authentication_required: "Authentication required. Please reconnect your account.",
    ConsolidatedStatus.connection_issues: "Connection issue detected. Please test your connection and try again.",
    ConsolidatedStatus.not_connected: "Account not connected. Please connect your {provider} account.",
    ConsolidatedStatus.unknown: "Status unknown. Please refresh to check your connection.",
}

_RECONNECT_STEPS = [
    "Go to Settings → Cloud Storage",
    'Click "Reconnect {provider}"',
    "Complete the authorization process",
    "Retry your operation",
]

_RECOVERY_INSTRUCTIONS = {
    CloudStorageErrorType.TOKEN_EXPIRED: _RECONNECT_STEPS,
    CloudStorageErrorType.INVALID_CREDENTIALS: _RECONNECT_STEPS,
    CloudStorageErrorType.INSUFFICIENT_PERMISSIONS: [
        "Go to Settings → Cloud Storage",
        'Click "Reconnect {provider}"',
        "Ensure you grant full access when prompted",
    ],
    CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED: [
        "Wait a few minutes before trying again",
        "Avoid repeatedly testing the connection",
    ],
    CloudStorageErrorType.STORAGE_QUOTA_EXCEEDED: [
        "Free up space in your {provider} account",
        "Empty your {provider} trash",
        "Consider upgrading your {provider} storage plan",
    ],
    CloudStorageErrorType.API_QUOTA_EXCEEDED: [
        "Wait for the quota to reset (usually within an hour)",
        "Operations will resume automatically",
    ],
    CloudStorageErrorType.NETWORK_ERROR: [
        "Check your internet connection",
        "Try again in a few minutes",
    ],
    CloudStorageErrorType.SERVICE_UNAVAILABLE: [
        "Wait a few minutes and try again",
        "Check the {provider} status page for service updates",
        "Operations will be retried automatically",
    ],
    CloudStorageErrorType.TIMEOUT: [
        "Try again, timeouts are usually temporary",
        "For large files, try uploading during off-peak hours",
    ],
    CloudStorageErrorType.FOLDER_ACCESS_DENIED: [
        "Check that the target folder exists in your {provider}",
        "Verify you have write permissions to the folder",
    ],
    CloudStorageErrorType.PROVIDER_NOT_CONFIGURED: [
        "Go to Settings → Cloud Storage",
        "Ensure all required fields are filled correctly",
    ],
}

_DEFAULT_INSTRUCTIONS = [
    "Try the operation again",
    "Check your connection and settings",
    "Contact support if the problem persists",
]


def rate_limit_message(retry_after: int | float | None) -> str:
    seconds = retry_after or 0
    if seconds <= 0:
        seconds = CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED.base_retry_delay
    minutes = max(1, math.ceil(seconds / 60))
    unit = "minute" if minutes == 1 else "minutes"
    return f"Too many token refresh attempts. Please try again in {minutes} {unit}."


class ErrorMessageCatalog:
    """Canned user-facing messages keyed by classified error type and consolidated status."""

    def actionable_message(self, error_type: CloudStorageErrorType, context: dict[str, Any] | None = None) -> str:
        context = context or {}
        if error_type == CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED:
            return rate_limit_message(context.get("retry_after"))

        template = _ERROR_MESSAGES.get(error_type, _DEFAULT_ERROR_MESSAGE)
        return template.format(**self._template_values(context))

    def recovery_instructions(
        self, error_type: CloudStorageErrorType, context: dict[str, Any] | None = None
    ) -> list[str]:
        values = self._template_values(context or {})
        return [step.format(**values) for step in _RECOVERY_INSTRUCTIONS.get(error_type, _DEFAULT_INSTRUCTIONS)]

    def status_display_message(
        self, consolidated_status: ConsolidatedStatus | str | None, context: dict[str, Any] | None = None
    ) -> str:
        """An `error_type` in the context always wins over the status itself."""
        context = context or {}
        error_type = CloudStorageErrorType.from_value(context.get("error_type"))
        if error_type is not None:
            return self.actionable_message(error_type, context)

        status = as_consolidated_status(consolidated_status) or ConsolidatedStatus.unknown
        return _STATUS_MESSAGES[status].format(**self._template_values(context))

    def generate_error_response(
        self, error_type: CloudStorageErrorType, context: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        context = context or {}
        response: dict[str, Any] = {
            "error_type": error_type.value,
            "message": self.actionable_message(error_type, context),
            "instructions": self.recovery_instructions(error_type, context),
            "is_retryable": error_type in RETRYABLE_ERROR_TYPES,
            "requires_user_action": error_type in USER_ACTION_ERROR_TYPES,
        }
        if context.get("retry_after") is not None:
            response["retry_after"] = context["retry_after"]
        return response

    @staticmethod
    def _template_values(context: dict[str, Any]) -> dict[str, str]:
        return {
            "provider": provider_display_name(context.get("provider")),
            "file_name": str(context.get("file_name") or "file"),
            "operation": str(context.get("operation") or "operation"),
        }


def as_consolidated_status(value: ConsolidatedStatus | str | None) -> ConsolidatedStatus | None:
    if value is None or isinstance(value, ConsolidatedStatus):
        return value
    try:
        return ConsolidatedStatus(value)
    except ValueError:
        return None
