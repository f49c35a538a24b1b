"""Tests for process definitions."""

import pytest
from sqlalchemy import func, select

from lotflow.middleware.exceptions import BusinessLogicError
from lotflow.models import ProcessDefinition
from lotflow.schemas.process import ProcessCreate, ProcessStepCreate
from lotflow.services.process_definitions import ProcessService


def steps(*codes):
    return [ProcessStepCreate(seq=i, step_code=c, step_name=c.title()) for i, c in enumerate(codes, 1)]


@pytest.mark.asyncio
class TestProcessDefinitions:

    async def test_steps_returned_in_sequence(self, session_factory, operator):
        service = ProcessService(session_factory, operator)
        body = ProcessCreate(code="RAISIN", name="Raisins", steps=[
            ProcessStepCreate(seq=2, step_code="SORT", step_name="Sorting"),
            ProcessStepCreate(seq=1, step_code="WASH", step_name="Washing"),
        ])

        created = await service.create_process(body)

        assert [s.step_code for s in created.steps] == ["WASH", "SORT"]
        assert [p.code for p in await service.list_processes()] == ["RAISIN"]

    async def test_duplicate_sequence_rejected(self, session_factory, operator):
        body = ProcessCreate(code="X", name="X", steps=[
            ProcessStepCreate(seq=1, step_code="WASH", step_name="Washing"),
            ProcessStepCreate(seq=1, step_code="DRY", step_name="Drying"),
        ])

        with pytest.raises(BusinessLogicError, match="unique"):
            await ProcessService(session_factory, operator).create_process(body)

    async def test_duplicate_code_rejected(self, session_factory, operator, process):
        with pytest.raises(BusinessLogicError, match="already exists"):
            await ProcessService(session_factory, operator).create_process(
                ProcessCreate(code=process.code, name="Again", steps=steps("WASH"))
            )

    async def test_step_write_failure_removes_process(self, session_factory, operator, monkeypatch):
        service = ProcessService(session_factory, operator)

        async def broken_insert_all(records):
            raise RuntimeError("disk full")

        monkeypatch.setattr(service.store, "insert_all", broken_insert_all)

        with pytest.raises(RuntimeError):
            await service.create_process(ProcessCreate(code="P", name="P", steps=steps("WASH", "SORT")))

        async with session_factory() as db:
            assert (await db.execute(select(func.count()).select_from(ProcessDefinition))).scalar() == 0
