import re
from enum import IntEnum
from typing import Any

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConsolidatedStatus
from app.constants.providers import provider_display_name
from app.controllers.messages.catalog import (
    RETRYABLE_ERROR_TYPES,
    USER_ACTION_ERROR_TYPES,
    ErrorMessageCatalog,
    as_consolidated_status,
)


class MessagePriority(IntEnum):
    """Lower value wins."""

    RATE_LIMIT = 1
    AUTHENTICATION = 2
    STORAGE = 3
    NETWORK = 4
    OTHER_ERROR = 5
    CONNECTION_STATUS = 6
    HEALTHY = 7


AUTHENTICATION_ERROR_TYPES = frozenset(
    {
        CloudStorageErrorType.TOKEN_EXPIRED,
        CloudStorageErrorType.INVALID_CREDENTIALS,
        CloudStorageErrorType.INSUFFICIENT_PERMISSIONS,
    }
)

STORAGE_ERROR_TYPES = frozenset(
    {
        CloudStorageErrorType.STORAGE_QUOTA_EXCEEDED,
        CloudStorageErrorType.API_QUOTA_EXCEEDED,
        CloudStorageErrorType.FOLDER_ACCESS_DENIED,
        CloudStorageErrorType.BUCKET_NOT_FOUND,
        CloudStorageErrorType.INVALID_BUCKET_NAME,
        CloudStorageErrorType.BUCKET_ACCESS_DENIED,
    }
)

NETWORK_ERROR_TYPES = frozenset(
    {
        CloudStorageErrorType.NETWORK_ERROR,
        CloudStorageErrorType.TIMEOUT,
        CloudStorageErrorType.SERVICE_UNAVAILABLE,
    }
)

DEPRECATED_MESSAGE_PATTERNS = [
    re.compile(r"connection issues detected\s*-\s*please check your network", re.IGNORECASE),
]

_URGENCY = {
    MessagePriority.RATE_LIMIT: "medium",
    MessagePriority.AUTHENTICATION: "high",
    MessagePriority.STORAGE: "high",
    MessagePriority.NETWORK: "low",
    MessagePriority.OTHER_ERROR: "medium",
    MessagePriority.CONNECTION_STATUS: "medium",
    MessagePriority.HEALTHY: "low",
}


def validate_message_consistency(message: str) -> bool:
    return not any(pattern.search(message) for pattern in DEPRECATED_MESSAGE_PATTERNS)


def has_redundant_information(message: str, context: dict[str, Any]) -> bool:
    """True when a message contradicts or repeats what the status already says."""
    text = message.lower()
    status = as_consolidated_status(context.get("consolidated_status"))
    connected = context.get("connection_status") == "connected" or status == ConsolidatedStatus.healthy

    if connected and ("connection issue" in text or "not connected" in text):
        return True
    if status == ConsolidatedStatus.authentication_required and "working properly" in text:
        return True
    return False


class MessagePriorityResolver:
    """Picks the single user-facing message when several error signals are true at once."""

    def __init__(self, catalog: ErrorMessageCatalog | None = None) -> None:
        self._catalog = catalog or ErrorMessageCatalog()

    def priority_of(self, context: dict[str, Any]) -> MessagePriority:
        error_type = CloudStorageErrorType.from_value(context.get("error_type"))
        if error_type == CloudStorageErrorType.TOKEN_REFRESH_RATE_LIMITED:
            return MessagePriority.RATE_LIMIT
        if error_type in AUTHENTICATION_ERROR_TYPES:
            return MessagePriority.AUTHENTICATION
        if error_type in STORAGE_ERROR_TYPES:
            return MessagePriority.STORAGE
        if error_type in NETWORK_ERROR_TYPES:
            return MessagePriority.NETWORK
        if error_type is not None:
            return MessagePriority.OTHER_ERROR

        status = as_consolidated_status(context.get("consolidated_status"))
        if status == ConsolidatedStatus.authentication_required:
            return MessagePriority.AUTHENTICATION
        if status == ConsolidatedStatus.healthy:
            return MessagePriority.HEALTHY
        return MessagePriority.CONNECTION_STATUS

    def select(self, contexts: list[dict[str, Any]]) -> dict[str, Any] | None:
        """Highest-priority context; the earliest one wins a tie."""
        if not contexts:
            return None
        return min(contexts, key=self.priority_of)

    def resolve(self, contexts: list[dict[str, Any]]) -> str:
        context = self.select(contexts)
        if context is None:
            return self._catalog.status_display_message(ConsolidatedStatus.unknown)
        return self.message_for(context)

    def message_for(self, context: dict[str, Any]) -> str:
        return self._catalog.status_display_message(context.get("consolidated_status"), context)

    def generate_context_aware_message(self, context: dict[str, Any]) -> dict[str, Any]:
        priority = self.priority_of(context)
        error_type = CloudStorageErrorType.from_value(context.get("error_type"))
        status = as_consolidated_status(context.get("consolidated_status"))

        urgency = _URGENCY[priority]
        if priority == MessagePriority.CONNECTION_STATUS and int(context.get("consecutive_failures") or 0) >= 5:
            urgency = "high"

        if error_type is not None:
            is_retryable = error_type in RETRYABLE_ERROR_TYPES
            requires_user_action = error_type in USER_ACTION_ERROR_TYPES
        else:
            is_retryable = status in (ConsolidatedStatus.connection_issues, ConsolidatedStatus.unknown, None)
            requires_user_action = status in (
                ConsolidatedStatus.authentication_required,
                ConsolidatedStatus.not_connected,
            )

        return {
            "message": self.message_for(context),
            "urgency": urgency,
            "action_buttons": self._action_buttons(priority, status, context),
            "is_retryable": is_retryable,
            "requires_user_action": requires_user_action,
            "message_type": priority.name.lower(),
        }

    @staticmethod
    def _action_buttons(
        priority: MessagePriority, status: ConsolidatedStatus | None, context: dict[str, Any]
    ) -> list[dict[str, str]]:
        provider = provider_display_name(context.get("provider"))
        if priority == MessagePriority.RATE_LIMIT:
            return [{"type": "retry_later", "label": "Try Again Later"}]
        if priority == MessagePriority.AUTHENTICATION:
            return [{"type": "reconnect", "label": f"Reconnect {provider}"}]
        if priority == MessagePriority.STORAGE:
            return [{"type": "manage_storage", "label": f"Manage {provider} Storage"}]
        if priority == MessagePriority.NETWORK:
            return [
                {"type": "retry", "label": "Retry"},
                {"type": "test_connection", "label": "Test Connection"},
            ]
        if priority == MessagePriority.HEALTHY:
            return []
        if status == ConsolidatedStatus.not_connected:
            return [{"type": "connect", "label": f"Connect {provider}"}]
        return [{"type": "test_connection", "label": "Test Connection"}]

