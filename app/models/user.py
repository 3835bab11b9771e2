from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin
from .decorators.types import EnumStringType


class UserRole(Enum):
    admin = "admin"
    employee = "employee"
    client = "client"


class User(Base, TimestampMixin):
    """Owner of cloud storage connections; admins also receive escalations."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        EnumStringType(UserRole), nullable=False, server_default=UserRole.client.value
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    def __repr__(self) -> str:
        return f"<User(email='{self.email}', role='{self.role.value}')>"
