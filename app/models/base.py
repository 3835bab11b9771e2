from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    id: Mapped[int] = mapped_column(sa.BigInteger(), primary_key=True)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id}>"


def timestamp_column(nullable: bool = True, **kwargs: Any) -> Mapped[Any]:
    """Timezone-aware timestamp; every stored instant is compared against `datetime.now(UTC)`."""
    return mapped_column(sa.DateTime(timezone=True), nullable=nullable, **kwargs)


class TimestampMixin:
    created_at: Mapped[datetime] = timestamp_column(nullable=False, server_default=sa.func.now())
    updated_at: Mapped[datetime] = timestamp_column(
        nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()
    )
