"""Tests for rework lineage."""

import pytest
from sqlalchemy import select

from lotflow.middleware.exceptions import BusinessLogicError
from lotflow.models import ReworkedLot, SupplyBatch
from lotflow.schemas.lot_run import StepWasteCreate
from lotflow.services.step_records import StepRecordService

from conftest import step_of


@pytest.mark.asyncio
class TestCreateRework:

    async def test_rework_run_references_origin(self, session_factory, lot_runs, lot_run, sorted_output):
        sort = step_of(lot_run, "SORT")

        result = await lot_runs.create_rework(sort.id, 120.0, "moisture too high")

        assert result.rework_lot_no == "REWORK-LOT-001-001"
        assert result.run.run.is_rework is True
        assert result.run.run.original_process_lot_run_id == lot_run.run.id
        assert result.run.original_lot_no == "LOT-001"
        assert result.run.lot_no == "REWORK-LOT-001-001"
        assert [s.step_code for s in result.run.steps] == ["WASH", "DRY", "SORT", "PACK"]

        async with session_factory() as db:
            batch = await db.get(SupplyBatch, result.rework_supply_batch_id)
            link = (await db.execute(select(ReworkedLot))).scalar_one()
        assert batch.current_qty == pytest.approx(120.0)
        assert batch.process_status == "PROCESSING"
        assert link.step_run_id == sort.id
        assert link.reason == "moisture too high"

    async def test_quantity_limited_by_what_remains(
        self, session_factory, operator, lot_runs, lot_run, sorted_output,
    ):
        # 1000 kg in, 50 kg washed out, 500 kg sorted → 450 kg left
        await StepRecordService(session_factory, operator).add_waste(
            step_of(lot_run, "WASH").id, StepWasteCreate(stage="WASH", waste_type="dirt", quantity_kg=50),
        )
        sort = step_of(lot_run, "SORT")

        assert await lot_runs.reworkable_quantity(sort.id) == pytest.approx(450.0)
        await lot_runs.create_rework(sort.id, 400.0)

        with pytest.raises(BusinessLogicError, match="exceeds the 50.0 kg still available"):
            await lot_runs.create_rework(sort.id, 60.0)

        second = await lot_runs.create_rework(sort.id, 50.0)
        assert second.rework_lot_no == "REWORK-LOT-001-002"

    async def test_only_from_sorting_step(self, lot_runs, lot_run):
        with pytest.raises(BusinessLogicError, match="sorting step"):
            await lot_runs.create_rework(step_of(lot_run, "WASH").id, 10.0)

    async def test_quantity_must_be_positive(self, lot_runs, lot_run):
        with pytest.raises(BusinessLogicError, match="greater than zero"):
            await lot_runs.create_rework(step_of(lot_run, "SORT").id, 0)

    async def test_failure_removes_rework_batch_and_link(
        self, session_factory, lot_runs, lot_run, monkeypatch,
    ):
        async def inventory_down(batch_id):
            raise RuntimeError("inventory down")

        monkeypatch.setattr(lot_runs.inventory, "mark_processing", inventory_down)

        with pytest.raises(RuntimeError):
            await lot_runs.create_rework(step_of(lot_run, "SORT").id, 10.0)

        async with session_factory() as db:
            lots = (await db.execute(select(SupplyBatch.lot_no))).scalars().all()
            links = (await db.execute(select(ReworkedLot))).scalars().all()
        assert lots == ["LOT-001"]
        assert links == []
