from dependency_injector import containers, providers

from app.repos.connection_health import ConnectionHealthRepo
from app.repos.pending_upload import PendingUploadRepo
from app.repos.recovery_attempt import RecoveryAttemptRepo
from app.repos.token import TokenRepo
from app.repos.user import UserRepo


class RepoContainer(containers.DeclarativeContainer):
    user = providers.Singleton(UserRepo)
    token = providers.Singleton(TokenRepo)
    connection_health = providers.Singleton(ConnectionHealthRepo)
    pending_upload = providers.Singleton(PendingUploadRepo)
    recovery_attempt = providers.Singleton(RecoveryAttemptRepo)
