"""Process definition router.

Endpoints:
    POST /api/processes              Create a process with its steps
    GET  /api/processes              List processes
    GET  /api/processes/{id}         Single process with ordered steps
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lotflow.database import get_session_factory
from lotflow.schemas.process import ProcessCreate, ProcessOut
from lotflow.services.process_definitions import ProcessService
from lotflow.utils.identity import Operator, get_operator

router = APIRouter()


def _service(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    operator: Operator = Depends(get_operator),
) -> ProcessService:
    return ProcessService(factory, operator)


@router.post("", response_model=ProcessOut, status_code=status.HTTP_201_CREATED)
async def create_process(body: ProcessCreate, service: ProcessService = Depends(_service)):
    return await service.create_process(body)


@router.get("", response_model=list[ProcessOut])
async def list_processes(service: ProcessService = Depends(_service)):
    return await service.list_processes()


@router.get("/{process_id}", response_model=ProcessOut)
async def get_process(process_id: str, service: ProcessService = Depends(_service)):
    return await service.get_process(process_id)
