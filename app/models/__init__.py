from .base import Base
from .connection_health import ConnectionHealthRecord
from .pending_upload import PendingUpload, UploadStatus
from .recovery_attempt import RecoveryAttempt
from .token import TokenRecord
from .user import User, UserRole

__all__ = [
    "Base",
    "ConnectionHealthRecord",
    "PendingUpload",
    "RecoveryAttempt",
    "TokenRecord",
    "UploadStatus",
    "User",
    "UserRole",
]
