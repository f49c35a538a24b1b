"""Record-store access shared by every service.

Each call opens its own short-lived session and commits on exit, so a
service method that touches several tables issues several independent
writes.  Multi-record operations pair those writes with a ``Saga``
(see ``services.saga``) to undo what already landed if a later write
fails.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Sequence, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lotflow.middleware.exceptions import ResourceNotFoundError

T = TypeVar("T")


class Store:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def write(self) -> AsyncIterator[AsyncSession]:
        """Session committed when the block exits cleanly, rolled back otherwise."""
        async with self.session_factory() as db:
            yield db
            await db.commit()

    async def insert(self, record: T) -> T:
        async with self.write() as db:
            db.add(record)
        return record

    async def insert_all(self, records: Sequence[Any]) -> None:
        async with self.write() as db:
            db.add_all(list(records))

    async def get(self, model: type[T], record_id: str) -> T | None:
        async with self.session_factory() as db:
            return await db.get(model, record_id)

    async def get_or_404(self, model: type[T], record_id: str, label: str) -> T:
        record = await self.get(model, record_id)
        if record is None:
            raise ResourceNotFoundError(label, record_id)
        return record

    async def update(self, model: type[T], record_id: str, values: dict) -> T:
        async with self.write() as db:
            record = await db.get(model, record_id)
            if record is None:
                raise ResourceNotFoundError(model.__name__, record_id)
            for field, value in values.items():
                setattr(record, field, value)
        return record

    async def delete(self, model: type, record_id: str) -> None:
        async with self.write() as db:
            await db.execute(delete(model).where(model.id == record_id))

    async def delete_where(self, model: type, *criteria) -> None:
        async with self.write() as db:
            await db.execute(delete(model).where(*criteria))

    async def all(self, stmt) -> list:
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def first(self, stmt):
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return result.scalars().first()

    async def find(self, model: type[T], *criteria, order_by=None) -> list[T]:
        stmt = select(model).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        return await self.all(stmt)

    async def rows(self, stmt) -> list:
        """Multi-entity results (e.g. ``select(StepRun, ProcessStep)``) as tuples."""
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.all())
