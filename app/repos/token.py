from datetime import datetime
from typing import Sequence

from sqlalchemy import delete

from app.models import TokenRecord
from app.repos.base import BaseRepo


class TokenRepo(BaseRepo[TokenRecord]):
    """Repository for stored OAuth tokens."""

    def __init__(self) -> None:
        super().__init__(TokenRecord)

    async def get_by_user_and_provider(
        self, user_id: int, provider: str, refresh: bool = False
    ) -> TokenRecord | None:
        """
        Load the token for a user/provider pair.

        `refresh=True` bypasses the session identity map so a row written by another process since the last read
        is seen as it is now in the database.
        """
        query = self.base_stmt.where(TokenRecord.user_id == user_id, TokenRecord.provider == provider)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.execute(query)
        return result.one_or_none()

    async def save(self, token: TokenRecord) -> TokenRecord:
        """Persist and commit so other processes see the new credentials immediately."""
        await self.add(token, commit=True)
        return token

    async def clear(self, user_id: int, provider: str) -> None:
        await self.execute_statement(
            delete(TokenRecord).where(TokenRecord.user_id == user_id, TokenRecord.provider == provider),
            commit=True,
        )

    async def get_expiring(self, before: datetime, after: datetime | None = None) -> Sequence[TokenRecord]:
        """Tokens with a refresh token whose expiry falls before `before` (and after `after`, when given)."""
        query = self.base_stmt.where(
            TokenRecord.expires_at.is_not(None),
            TokenRecord.expires_at <= before,
            TokenRecord.refresh_token.is_not(None),
            TokenRecord.requires_user_intervention.is_(False),
        )
        if after is not None:
            query = query.where(TokenRecord.expires_at > after)
        return await self.all(query.order_by(TokenRecord.expires_at))
