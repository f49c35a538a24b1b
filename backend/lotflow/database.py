"""Database engine, session factory, and the declarative base.

The engine treats the store as a set of record collections: every write
is committed on its own short-lived session (see ``services.base``), so
multi-record operations are ordered sequences of independent writes
rather than one transaction.

  - Base              → all lot-execution tables
  - async_session     → session factory used by the services
  - get_session_factory() → FastAPI dependency (overridden in tests)
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from lotflow.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Declarative base for every lot-execution table."""
    pass


async def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory the services open their writes on."""
    return async_session
