from enum import Enum


class RecoveryStrategy(Enum):
    NO_ACTION_NEEDED = "no_action_needed"
    TOKEN_REFRESH = "token_refresh"
    NETWORK_RETRY = "network_retry"
    QUOTA_WAIT = "quota_wait"
    SERVICE_RETRY = "service_retry"
    USER_INTERVENTION_REQUIRED = "user_intervention_required"
    HEALTH_CHECK_RETRY = "health_check_retry"
    UNKNOWN = "unknown"
