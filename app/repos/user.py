from typing import Sequence

from app.models import User, UserRole
from app.repos.base import BaseRepo


class UserRepo(BaseRepo[User]):
    """Repository for User model operations."""

    def __init__(self) -> None:
        super().__init__(User)

    async def get_admins(self) -> Sequence[User]:
        """Users that receive notification-failure escalations."""
        return await self.all(self.base_stmt.where(User.role == UserRole.admin).order_by(User.id))
