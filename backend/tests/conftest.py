"""Pytest configuration and fixtures for LotFlow tests.

Every test gets its own SQLite database file (aiosqlite) with the full
schema created from the models, plus helpers that build a process, a
supply batch and a started lot run.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from lotflow.database import Base, get_session_factory
from lotflow.main import app
from lotflow.models import SupplyBatch
from lotflow.schemas.lot_run import LotRunDetail, StepRunOut
from lotflow.schemas.process import ProcessCreate, ProcessOut, ProcessStepCreate
from lotflow.schemas.sorting import SortingOutputCreate, SortingOutputOut
from lotflow.services.lot_runs import LotRunService
from lotflow.services.packaging import PackagingService
from lotflow.services.process_definitions import ProcessService
from lotflow.services.sorting import SortingService
from lotflow.utils.identity import Operator


OPERATOR = Operator(id="op-1", name="Thandi")


def step_of(detail: LotRunDetail, step_code: str) -> StepRunOut:
    """The step run with the given code in a lot run snapshot."""
    return next(s for s in detail.steps if s.step_code == step_code)


# ── Database ─────────────────────────────────────────────────

@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lotflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def operator() -> Operator:
    return OPERATOR


# ── Domain fixtures ──────────────────────────────────────────

@pytest_asyncio.fixture
async def process(session_factory, operator) -> ProcessOut:
    service = ProcessService(session_factory, operator)
    return await service.create_process(ProcessCreate(
        code="ALMOND-STD",
        name="Almond standard line",
        steps=[
            ProcessStepCreate(seq=1, step_code="WASH", step_name="Washing"),
            ProcessStepCreate(seq=2, step_code="DRY", step_name="Drying"),
            ProcessStepCreate(seq=3, step_code="SORT", step_name="Sorting"),
            ProcessStepCreate(seq=4, step_code="PACK", step_name="Packaging"),
        ],
    ))


@pytest_asyncio.fixture
async def supply_batch(session_factory) -> SupplyBatch:
    batch = SupplyBatch(
        lot_no="LOT-001",
        product_id="almond-raw",
        received_qty=1000.0,
        current_qty=1000.0,
    )
    async with session_factory() as db:
        db.add(batch)
        await db.commit()
    return batch


@pytest_asyncio.fixture
async def lot_runs(session_factory, operator) -> LotRunService:
    return LotRunService(session_factory, operator)


@pytest_asyncio.fixture
async def lot_run(lot_runs, process, supply_batch) -> LotRunDetail:
    return await lot_runs.ensure_run(supply_batch.id, process.id)


@pytest_asyncio.fixture
async def sorting(session_factory, operator, lot_run) -> SortingService:
    service = SortingService(session_factory, step_of(lot_run, "SORT").id, operator)
    await service.load()
    return service


@pytest_asyncio.fixture
async def sorted_output(sorting) -> SortingOutputOut:
    return await sorting.add_output(SortingOutputCreate(
        product_id="almond-kernel", quantity_kg=500.0, moisture_percent=5.5,
    ))


@pytest_asyncio.fixture
async def packaging(session_factory, operator, lot_run) -> PackagingService:
    service = PackagingService(session_factory, step_of(lot_run, "PACK").id, operator)
    await service.load()
    return service


# ── HTTP ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the session factory pointed at the test database."""

    async def override_get_session_factory():
        return session_factory

    app.dependency_overrides[get_session_factory] = override_get_session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Operator-Id": OPERATOR.id, "X-Operator-Name": OPERATOR.name},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
