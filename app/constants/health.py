from enum import Enum


class ConnectionState(Enum):
    """Raw state derived from consecutive failure counting."""

    healthy = "healthy"
    degraded = "degraded"
    unhealthy = "unhealthy"
    disconnected = "disconnected"

    @classmethod
    def from_failures(cls, consecutive_failures: int) -> "ConnectionState":
        if consecutive_failures >= UNHEALTHY_FAILURE_THRESHOLD:
            return cls.unhealthy
        if consecutive_failures >= DEGRADED_FAILURE_THRESHOLD:
            return cls.degraded
        return cls.healthy


class ConsolidatedStatus(Enum):
    """User-facing status reconciled from every available health signal."""

    healthy = "healthy"
    authentication_required = "authentication_required"
    connection_issues = "connection_issues"
    not_connected = "not_connected"
    unknown = "unknown"

    @property
    def legacy_state(self) -> ConnectionState:
        if self == ConsolidatedStatus.healthy:
            return ConnectionState.healthy
        if self == ConsolidatedStatus.not_connected:
            return ConnectionState.disconnected
        return ConnectionState.unhealthy


class HealthStatusKind(Enum):
    healthy = "healthy"
    authentication_required = "authentication_required"
    degraded = "degraded"
    unhealthy = "unhealthy"
    disconnected = "disconnected"
    connection_issues = "connection_issues"

    @property
    def consolidated_status(self) -> ConsolidatedStatus:
        return _KIND_TO_CONSOLIDATED[self]


_KIND_TO_CONSOLIDATED = {
    HealthStatusKind.healthy: ConsolidatedStatus.healthy,
    HealthStatusKind.authentication_required: ConsolidatedStatus.authentication_required,
    HealthStatusKind.degraded: ConsolidatedStatus.connection_issues,
    HealthStatusKind.unhealthy: ConsolidatedStatus.connection_issues,
    HealthStatusKind.connection_issues: ConsolidatedStatus.connection_issues,
    HealthStatusKind.disconnected: ConsolidatedStatus.not_connected,
}

DEGRADED_FAILURE_THRESHOLD = 2
UNHEALTHY_FAILURE_THRESHOLD = 5
