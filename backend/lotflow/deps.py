"""FastAPI dependencies that build a loaded service per request."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lotflow.database import get_session_factory
from lotflow.services.lot_runs import LotRunService
from lotflow.services.packaging import PackagingService
from lotflow.services.sorting import SortingService
from lotflow.services.step_records import StepRecordService
from lotflow.utils.identity import Operator, get_operator


async def get_lot_runs(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    operator: Operator = Depends(get_operator),
) -> LotRunService:
    return LotRunService(factory, operator)


async def get_step_records(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    operator: Operator = Depends(get_operator),
) -> StepRecordService:
    return StepRecordService(factory, operator)


async def get_sorting(
    step_run_id: str,
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    operator: Operator = Depends(get_operator),
) -> SortingService:
    service = SortingService(factory, step_run_id, operator)
    await service.load()
    return service


async def get_packaging(
    step_run_id: str,
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    operator: Operator = Depends(get_operator),
) -> PackagingService:
    service = PackagingService(factory, step_run_id, operator)
    await service.load()
    return service
