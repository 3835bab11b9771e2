from typing import Any, Generic, Sequence, TypeVar, cast

from fastapi_async_sqlalchemy import db
from sqlalchemy import Executable, ScalarResult, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.selectable import Select

from app.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepo(Generic[ModelType]):
    """
    Shared plumbing for repositories bound to one model.

    Every repo reads the session from the `fastapi_async_sqlalchemy` context opened by the CLI or worker
    (`app.db.fastapi_sqlalchemy_context`), so repos are stateless and safe to share from the container.
    """

    def __init__(self, model: type[ModelType]) -> None:
        self._model = model
        self._db = db

    @property
    def session(self) -> AsyncSession:
        return cast(AsyncSession, self._db.session)

    @property
    def base_stmt(self) -> Select[tuple[ModelType]]:
        return select(self._model)

    async def execute(self, query: Select[tuple[ModelType]]) -> ScalarResult[ModelType]:
        result = await self.session.execute(query)
        return cast(ScalarResult[ModelType], result.scalars())

    async def all(self, query: Select[tuple[ModelType]]) -> Sequence[ModelType]:
        return (await self.execute(query)).all()

    async def execute_statement(self, stmt: Executable, commit: bool = False) -> Any:
        """Run a bulk insert/update/delete statement and return the raw result."""
        result = await self.session.execute(stmt)
        if commit:
            await self.commit()
        return result

    async def add(self, model: ModelType, commit: bool = False) -> None:
        self.session.add(model)
        if commit:
            await self.commit()
        else:
            await self.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def flush(self) -> None:
        await self.session.flush()
