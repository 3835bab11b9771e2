import pytest

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConsolidatedStatus
from app.controllers.messages.catalog import ErrorMessageCatalog, rate_limit_message
from app.controllers.messages.priority import (
    MessagePriority,
    MessagePriorityResolver,
    has_redundant_information,
    validate_message_consistency,
)
from tests.conftest import PROVIDER

CONNECTION_ISSUES = {"provider": PROVIDER, "consolidated_status": "connection_issues"}
NETWORK = {"provider": PROVIDER, "error_type": "network_error"}
RATE_LIMITED = {"provider": PROVIDER, "error_type": "token_refresh_rate_limited", "retry_after": 300}
AUTH = {"provider": PROVIDER, "error_type": "invalid_credentials"}
STORAGE = {"provider": PROVIDER, "error_type": "storage_quota_exceeded"}
HEALTHY = {"provider": PROVIDER, "consolidated_status": "healthy"}


class TestPriority:
    def test_rate_limit_beats_everything(self, priority_resolver: MessagePriorityResolver) -> None:
        message = priority_resolver.resolve([CONNECTION_ISSUES, NETWORK, RATE_LIMITED])

        assert message == "Too many token refresh attempts. Please try again in 5 minutes."

    @pytest.mark.parametrize(
        "contexts, expected",
        [
            ([STORAGE, AUTH], AUTH),
            ([NETWORK, STORAGE], STORAGE),
            ([HEALTHY, NETWORK], NETWORK),
            ([CONNECTION_ISSUES, HEALTHY], CONNECTION_ISSUES),
            ([NETWORK, {**NETWORK, "error_type": "timeout"}], NETWORK),
        ],
    )
    def test_select(self, priority_resolver: MessagePriorityResolver, contexts, expected) -> None:
        assert priority_resolver.select(contexts) is expected

    def test_tiers(self, priority_resolver: MessagePriorityResolver) -> None:
        assert priority_resolver.priority_of(RATE_LIMITED) == MessagePriority.RATE_LIMIT
        assert priority_resolver.priority_of(AUTH) == MessagePriority.AUTHENTICATION
        assert priority_resolver.priority_of({"error_type": "api_quota_exceeded"}) == MessagePriority.STORAGE
        assert priority_resolver.priority_of({"error_type": "timeout"}) == MessagePriority.NETWORK
        assert priority_resolver.priority_of({"error_type": "file_not_found"}) == MessagePriority.OTHER_ERROR
        assert (
            priority_resolver.priority_of({"consolidated_status": "authentication_required"})
            == MessagePriority.AUTHENTICATION
        )
        assert priority_resolver.priority_of(HEALTHY) == MessagePriority.HEALTHY
        assert priority_resolver.priority_of({}) == MessagePriority.CONNECTION_STATUS

    def test_no_contexts(self, priority_resolver: MessagePriorityResolver) -> None:
        assert priority_resolver.select([]) is None
        assert priority_resolver.resolve([]) == "Status unknown. Please refresh to check your connection."


class TestContextAwareMessage:
    def test_repeated_connection_issues_are_urgent(self, priority_resolver: MessagePriorityResolver) -> None:
        display = priority_resolver.generate_context_aware_message({**CONNECTION_ISSUES, "consecutive_failures": 6})

        assert display == {
            "message": "Connection issue detected. Please test your connection and try again.",
            "urgency": "high",
            "action_buttons": [{"type": "test_connection", "label": "Test Connection"}],
            "is_retryable": True,
            "requires_user_action": False,
            "message_type": "connection_status",
        }

    def test_authentication_error(self, priority_resolver: MessagePriorityResolver) -> None:
        display = priority_resolver.generate_context_aware_message(
            {"provider": PROVIDER, "error_type": "token_expired"}
        )

        assert display["message"].startswith("Your Google Drive connection has expired")
        assert display["urgency"] == "high"
        assert display["action_buttons"] == [{"type": "reconnect", "label": "Reconnect Google Drive"}]
        assert display["requires_user_action"]
        assert not display["is_retryable"]
        assert display["message_type"] == "authentication"

    def test_network_error(self, priority_resolver: MessagePriorityResolver) -> None:
        display = priority_resolver.generate_context_aware_message(NETWORK)

        assert display["urgency"] == "low"
        assert [b["type"] for b in display["action_buttons"]] == ["retry", "test_connection"]
        assert display["is_retryable"]

    def test_healthy(self, priority_resolver: MessagePriorityResolver) -> None:
        display = priority_resolver.generate_context_aware_message(HEALTHY)

        assert display["message"] == "Connected and working properly"
        assert display["action_buttons"] == []
        assert not display["is_retryable"]
        assert not display["requires_user_action"]

    def test_not_connected(self, priority_resolver: MessagePriorityResolver) -> None:
        display = priority_resolver.generate_context_aware_message(
            {"provider": PROVIDER, "consolidated_status": "not_connected"}
        )

        assert display["message"] == "Account not connected. Please connect your Google Drive account."
        assert display["action_buttons"] == [{"type": "connect", "label": "Connect Google Drive"}]
        assert display["requires_user_action"]


class TestMessageChecks:
    def test_deprecated_wording_is_rejected(self) -> None:
        assert not validate_message_consistency("Connection issues detected - please check your network")
        assert validate_message_consistency("Connection issue detected. Please test your connection and try again.")

    @pytest.mark.parametrize("status", list(ConsolidatedStatus))
    def test_status_messages_are_current(self, catalog: ErrorMessageCatalog, status: ConsolidatedStatus) -> None:
        assert validate_message_consistency(catalog.status_display_message(status, {"provider": PROVIDER}))

    @pytest.mark.parametrize(
        "message, context, redundant",
        [
            ("Connection issue detected.", {"consolidated_status": "healthy"}, True),
            ("Account not connected.", {"connection_status": "connected"}, True),
            ("Connected and working properly", {"consolidated_status": "authentication_required"}, True),
            ("Authentication required.", {"consolidated_status": "authentication_required"}, False),
            ("Connection issue detected.", {"consolidated_status": "connection_issues"}, False),
        ],
    )
    def test_redundant_information(self, message: str, context: dict, redundant: bool) -> None:
        assert has_redundant_information(message, context) is redundant


class TestCatalog:
    def test_file_messages_use_context(self, catalog: ErrorMessageCatalog) -> None:
        message = catalog.actionable_message(
            CloudStorageErrorType.FILE_TOO_LARGE, {"provider": "amazon-s3", "file_name": "scan.tiff"}
        )
        assert message == "The file 'scan.tiff' is too large for Amazon S3. Please reduce the file size and try again."

    def test_defaults_fill_missing_context(self, catalog: ErrorMessageCatalog) -> None:
        assert catalog.actionable_message(CloudStorageErrorType.TIMEOUT) == (
            "The cloud storage operation timed out. This is usually temporary, please try again."
        )

    @pytest.mark.parametrize(
        "retry_after, expected",
        [(None, "5 minutes"), (0, "5 minutes"), (30, "1 minute"), (61, "2 minutes"), (3600, "60 minutes")],
    )
    def test_rate_limit_message(self, retry_after, expected: str) -> None:
        assert rate_limit_message(retry_after).endswith(f"in {expected}.")

    def test_error_type_wins_over_status(self, catalog: ErrorMessageCatalog) -> None:
        message = catalog.status_display_message(
            ConsolidatedStatus.healthy, {"provider": PROVIDER, "error_type": "service_unavailable"}
        )
        assert message == "Google Drive is temporarily unavailable. Please try again in a few minutes."

    def test_unknown_status_string(self, catalog: ErrorMessageCatalog) -> None:
        assert catalog.status_display_message("bogus").startswith("Status unknown")

    def test_error_response(self, catalog: ErrorMessageCatalog) -> None:
        response = catalog.generate_error_response(
            CloudStorageErrorType.API_QUOTA_EXCEEDED, {"provider": PROVIDER, "retry_after": 120}
        )

        assert response["error_type"] == "api_quota_exceeded"
        assert response["is_retryable"]
        assert not response["requires_user_action"]
        assert response["retry_after"] == 120
        assert response["instructions"] == [
            "Wait for the quota to reset (usually within an hour)",
            "Operations will resume automatically",
        ]

    def test_unlisted_error_gets_default_instructions(self, catalog: ErrorMessageCatalog) -> None:
        assert catalog.recovery_instructions(CloudStorageErrorType.INVALID_PARAMETER)[0] == "Try the operation again"
