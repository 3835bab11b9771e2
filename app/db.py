from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi_async_sqlalchemy import SQLAlchemyMiddleware, db
from starlette.applications import Starlette

from settings import settings

_initialized = False


def database_url() -> str:
    return f"{settings.database.async_host}/{settings.database.name}"


def init_database() -> None:
    """
    Bind the `db` session proxy to an engine outside of a web request.

    SQLAlchemyMiddleware configures the module-level session factory when it is constructed, so a throwaway
    Starlette app is enough. Safe to call more than once.
    """
    global _initialized
    if _initialized:
        return

    SQLAlchemyMiddleware(
        Starlette(),
        db_url=database_url(),
        engine_args={
            "echo": False,
            "future": True,
            "pool_size": settings.database.min_pool_size,
            "max_overflow": settings.database.max_pool_size - settings.database.min_pool_size,
        },
    )
    _initialized = True


@asynccontextmanager
async def fastapi_sqlalchemy_context() -> AsyncGenerator[None, None]:
    """One database session for a unit of work in a standalone script, e.g. a single monitor cycle."""
    init_database()
    async with db():
        yield
