from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from app.constants.errors import CloudStorageErrorType
from app.constants.health import ConsolidatedStatus, HealthStatusKind
from app.controllers.errors.classifier import to_cloud_storage_error
from settings import settings

if TYPE_CHECKING:
    from app.controllers.token.refresh_coordinator import RefreshResult


@dataclass
class HealthStatus:
    """Result of one live health validation."""

    kind: HealthStatusKind
    message: str
    error_type: CloudStorageErrorType | None = None
    details: dict[str, Any] = field(default_factory=dict)
    api_tested: bool = False
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def healthy(cls, message: str = "Connection is healthy", **details: Any) -> "HealthStatus":
        return cls(HealthStatusKind.healthy, message, details=details)

    @classmethod
    def authentication_required(
        cls,
        message: str = "Authentication required",
        error_type: CloudStorageErrorType = CloudStorageErrorType.INVALID_CREDENTIALS,
        **details: Any,
    ) -> "HealthStatus":
        return cls(HealthStatusKind.authentication_required, message, error_type, details=details)

    @classmethod
    def degraded(
        cls, message: str, error_type: CloudStorageErrorType | None = None, **details: Any
    ) -> "HealthStatus":
        return cls(HealthStatusKind.degraded, message, error_type, details=details)

    @classmethod
    def unhealthy(
        cls, message: str, error_type: CloudStorageErrorType | None = None, **details: Any
    ) -> "HealthStatus":
        return cls(HealthStatusKind.unhealthy, message, error_type, details=details)

    @classmethod
    def disconnected(cls, message: str = "No token found", **details: Any) -> "HealthStatus":
        return cls(HealthStatusKind.disconnected, message, details=details)

    @classmethod
    def connection_issues(
        cls, message: str, error_type: CloudStorageErrorType | None = None, **details: Any
    ) -> "HealthStatus":
        return cls(HealthStatusKind.connection_issues, message, error_type, details=details)

    @classmethod
    def from_token_error(cls, result: "RefreshResult") -> "HealthStatus":
        """Map a failed refresh onto the user-facing health classification."""
        if result.error_type is None:
            return cls.connection_issues("Token refresh failed", CloudStorageErrorType.UNKNOWN_ERROR)

        error_type = to_cloud_storage_error(result.error_type)
        details = {"refresh_error_type": result.error_type.value}
        if result.requires_user_intervention:
            return cls.authentication_required("Token refresh failed, reconnection required", error_type, **details)
        return cls.connection_issues("Token refresh failed", error_type, **details)

    @classmethod
    def from_api_error(cls, error_type: CloudStorageErrorType, message: str, **details: Any) -> "HealthStatus":
        if error_type.requires_user_intervention or error_type == CloudStorageErrorType.TOKEN_EXPIRED:
            status = cls.authentication_required(message, error_type, **details)
        else:
            status = cls.connection_issues(message, error_type, **details)
        status.api_tested = True
        return status

    @property
    def is_healthy(self) -> bool:
        return self.kind == HealthStatusKind.healthy

    @property
    def consolidated_status(self) -> ConsolidatedStatus:
        return self.kind.consolidated_status

    @property
    def cache_ttl(self) -> int:
        if self.is_healthy:
            return settings.health.healthy_cache_ttl
        return settings.health.unhealthy_cache_ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.kind.value,
            "consolidated_status": self.consolidated_status.value,
            "message": self.message,
            "error_type": self.error_type.value if self.error_type else None,
            "details": self.details,
            "api_tested": self.api_tested,
            "checked_at": self.checked_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HealthStatus":
        checked_at = data.get("checked_at")
        return cls(
            kind=HealthStatusKind(data["status"]),
            message=data.get("message") or "",
            error_type=CloudStorageErrorType.from_value(data.get("error_type")),
            details=dict(data.get("details") or {}),
            api_tested=bool(data.get("api_tested", False)),
            checked_at=datetime.fromisoformat(checked_at) if checked_at else datetime.now(UTC),
        )
