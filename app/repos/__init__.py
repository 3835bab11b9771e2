from .connection_health import ConnectionHealthRepo
from .pending_upload import PendingUploadRepo
from .recovery_attempt import RecoveryAttemptRepo
from .token import TokenRepo
from .user import UserRepo

__all__ = [
    "ConnectionHealthRepo",
    "PendingUploadRepo",
    "RecoveryAttemptRepo",
    "TokenRepo",
    "UserRepo",
]
