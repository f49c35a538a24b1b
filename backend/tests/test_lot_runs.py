"""Tests for the lot run state machine."""

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from lotflow.middleware.exceptions import BusinessLogicError
from lotflow.models import LotRun, NonConformance, ProductionBatch, StepRun, SupplyBatch
from lotflow.schemas.lot_run import (
    NonConformanceCreate,
    QualityCheckCreate,
    QualityScore,
    StepRunPatch,
    StepWasteCreate,
)
from lotflow.schemas.process import ProcessCreate, ProcessStepCreate
from lotflow.services import lot_runs as lot_runs_module
from lotflow.services.lot_runs import LotRunService
from lotflow.services.process_definitions import ProcessService
from lotflow.services.step_records import StepRecordService

from conftest import step_of


async def count(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar()


async def batch_status(session_factory, batch_id) -> str:
    async with session_factory() as db:
        return (await db.get(SupplyBatch, batch_id)).process_status


async def complete_all(service: LotRunService, detail):
    for step in detail.steps:
        detail = await service.advance_step(step.id, StepRunPatch(status="COMPLETED"))
    return detail


@pytest.mark.asyncio
class TestEnsureRun:

    async def test_creates_run_with_pending_steps_in_order(self, session_factory, lot_run, supply_batch):
        assert lot_run.run.status == "IN_PROGRESS"
        assert lot_run.run.started_at is not None
        assert lot_run.lot_no == "LOT-001"
        assert [s.step_code for s in lot_run.steps] == ["WASH", "DRY", "SORT", "PACK"]
        assert {s.status for s in lot_run.steps} == {"PENDING"}
        assert await batch_status(session_factory, supply_batch.id) == "PROCESSING"

    async def test_is_idempotent(self, session_factory, lot_runs, lot_run, supply_batch, process):
        again = await lot_runs.ensure_run(supply_batch.id, process.id)

        assert again.run.id == lot_run.run.id
        assert await count(session_factory, LotRun) == 1
        assert await count(session_factory, StepRun) == 4

    async def test_failure_undoes_partial_writes(
        self, session_factory, lot_runs, supply_batch, process, monkeypatch,
    ):
        async def inventory_down(batch_id):
            raise OperationalError("UPDATE supply_batches", {}, Exception("inventory down"))

        monkeypatch.setattr(lot_runs.inventory, "mark_processing", inventory_down)

        with pytest.raises(OperationalError):
            await lot_runs.ensure_run(supply_batch.id, process.id)

        assert await count(session_factory, LotRun) == 0
        assert await count(session_factory, StepRun) == 0
        assert await batch_status(session_factory, supply_batch.id) == "UNPROCESSED"


@pytest.mark.asyncio
class TestAdvanceStep:

    async def test_status_change_stamps_time_and_operator(self, lot_runs, lot_run):
        wash = step_of(lot_run, "WASH")

        started = step_of(await lot_runs.advance_step(wash.id, StepRunPatch(status="IN_PROGRESS")), "WASH")
        assert started.started_at is not None
        assert started.completed_at is None
        assert started.performed_by == "op-1"
        assert started.performed_by_name == "Thandi"

        done = step_of(await lot_runs.advance_step(
            wash.id, StepRunPatch(status="COMPLETED", quantity_out_kg=980.0, notes="rinsed twice"),
        ), "WASH")
        assert done.completed_at is not None
        assert done.started_at == started.started_at
        assert done.quantity_out_kg == pytest.approx(980.0)
        assert done.notes == "rinsed twice"

    async def test_partial_patch_keeps_other_fields(self, lot_runs, lot_run):
        dry = step_of(lot_run, "DRY")
        await lot_runs.advance_step(dry.id, StepRunPatch(location_id="dryer-2"))

        detail = await lot_runs.advance_step(dry.id, StepRunPatch(notes="48h at 60C"))

        assert step_of(detail, "DRY").location_id == "dryer-2"
        assert step_of(detail, "DRY").status == "PENDING"

    async def test_draft_kept_when_save_fails(self, lot_runs, lot_run, monkeypatch):
        wash = step_of(lot_run, "WASH")
        patch = StepRunPatch(status="COMPLETED", quantity_out_kg=970.0)

        async def store_down(*args, **kwargs):
            raise OperationalError("UPDATE step_runs", {}, Exception("connection lost"))

        monkeypatch.setattr(lot_runs_module, "log_activity", store_down)

        with pytest.raises(OperationalError):
            await lot_runs.advance_step(wash.id, patch)

        assert lot_runs.draft_for(wash.id) == patch
        detail = await lot_runs.get_run(lot_run.run.id)
        assert step_of(detail, "WASH").status == "PENDING"
        assert step_of(detail, "WASH").quantity_out_kg is None

    async def test_draft_cleared_after_successful_save(self, lot_runs, lot_run, monkeypatch):
        wash = step_of(lot_run, "WASH")
        lot_runs.drafts[wash.id] = StepRunPatch(notes="left over")

        await lot_runs.advance_step(wash.id, StepRunPatch(notes="saved"))

        assert lot_runs.draft_for(wash.id) is None


@pytest.mark.asyncio
class TestCompleteRun:

    async def test_refused_while_steps_pending(self, lot_runs, lot_run):
        await lot_runs.advance_step(step_of(lot_run, "WASH").id, StepRunPatch(status="COMPLETED"))

        with pytest.raises(BusinessLogicError, match="All steps must be completed"):
            await lot_runs.complete_run(lot_run.run.id)

        assert (await lot_runs.get_run(lot_run.run.id)).run.status == "IN_PROGRESS"

    async def test_completes_when_every_step_completed(self, session_factory, lot_runs, lot_run, supply_batch):
        await complete_all(lot_runs, lot_run)

        result = await lot_runs.complete_run(lot_run.run.id)

        assert result.run.run.status == "COMPLETED"
        assert result.run.run.completed_at is not None
        assert result.production_batch.batch_code.startswith("PROD-")
        assert result.production_batch.batch_code.endswith("-001")
        assert result.production_batch.product_id == "almond-raw"
        assert await batch_status(session_factory, supply_batch.id) == "PROCESSED"

    async def test_production_quantity_uses_last_recorded_output(self, lot_runs, lot_run):
        detail = await complete_all(lot_runs, lot_run)
        await lot_runs.advance_step(step_of(detail, "SORT").id, StepRunPatch(quantity_out_kg=910.0))
        await lot_runs.advance_step(step_of(detail, "PACK").id, StepRunPatch(quantity_out_kg=905.5))

        result = await lot_runs.complete_run(lot_run.run.id)

        assert result.production_batch.quantity == pytest.approx(905.5)

    async def test_completed_steps_cannot_be_reopened(self, lot_runs, lot_run):
        await complete_all(lot_runs, lot_run)
        await lot_runs.complete_run(lot_run.run.id)

        with pytest.raises(BusinessLogicError, match="can no longer change status"):
            await lot_runs.advance_step(step_of(lot_run, "WASH").id, StepRunPatch(status="IN_PROGRESS"))

    async def test_cannot_complete_twice(self, lot_runs, lot_run):
        await complete_all(lot_runs, lot_run)
        await lot_runs.complete_run(lot_run.run.id)

        with pytest.raises(BusinessLogicError, match="already completed"):
            await lot_runs.complete_run(lot_run.run.id)

    async def test_unresolved_non_conformance_warns_but_completes(
        self, session_factory, operator, lot_runs, lot_run, caplog,
    ):
        records = StepRecordService(session_factory, operator)
        await records.raise_non_conformance(
            step_of(lot_run, "SORT").id,
            NonConformanceCreate(nc_type="foreign matter", description="shell fragments", severity="MEDIUM"),
        )
        await complete_all(lot_runs, lot_run)

        result = await lot_runs.complete_run(lot_run.run.id)

        assert result.unresolved_non_conformances == 1
        assert "unresolved non-conformance" in caplog.text

    async def test_production_batch_failure_reopens_run(
        self, session_factory, lot_runs, lot_run, supply_batch, monkeypatch,
    ):
        await complete_all(lot_runs, lot_run)

        async def numbering_down(db, entity, lot_no=None):
            raise OperationalError("SELECT count", {}, Exception("timeout"))

        monkeypatch.setattr(lot_runs_module, "generate_code", numbering_down)

        with pytest.raises(OperationalError):
            await lot_runs.complete_run(lot_run.run.id)

        detail = await lot_runs.get_run(lot_run.run.id)
        assert detail.run.status == "IN_PROGRESS"
        assert detail.run.completed_at is None
        assert await count(session_factory, ProductionBatch) == 0
        assert await batch_status(session_factory, supply_batch.id) == "PROCESSING"


@pytest.mark.asyncio
class TestAvailableQuantity:

    async def test_breakdown_deducts_all_but_sorting(
        self, session_factory, operator, lot_runs, lot_run, sorting, sorted_output, packaging,
    ):
        from lotflow.schemas.packaging import PackagingRunFields, PackagingWasteCreate
        from lotflow.schemas.sorting import SortingWasteCreate

        records = StepRecordService(session_factory, operator)
        await records.add_waste(step_of(lot_run, "WASH").id, StepWasteCreate(stage="WASH", waste_type="dirt", quantity_kg=12))
        await records.add_waste(step_of(lot_run, "DRY").id, StepWasteCreate(stage="DRY", waste_type="moisture", quantity_kg=30))
        await sorting.add_waste(sorted_output.id, SortingWasteCreate(waste_type="shells", quantity_kg=40))
        await packaging.save_packaging_run(PackagingRunFields())
        await packaging.add_waste(PackagingWasteCreate(waste_type="spillage", quantity_kg=3))

        quantity = await lot_runs.available_quantity(lot_run.run.id)

        assert quantity.initial_kg == pytest.approx(1000.0)
        assert quantity.waste.washing == pytest.approx(12)
        assert quantity.waste.drying == pytest.approx(30)
        assert quantity.waste.sorting == pytest.approx(40)
        assert quantity.waste.packaging == pytest.approx(3)
        assert quantity.available_kg == pytest.approx(955.0)

    async def test_up_to_step_limits_stages(self, session_factory, operator, lot_runs, lot_run):
        records = StepRecordService(session_factory, operator)
        await records.add_waste(step_of(lot_run, "WASH").id, StepWasteCreate(stage="WASH", waste_type="dirt", quantity_kg=10))
        await records.add_waste(step_of(lot_run, "DRY").id, StepWasteCreate(stage="DRY", waste_type="moisture", quantity_kg=25))

        quantity = await lot_runs.available_quantity(lot_run.run.id, step_of(lot_run, "WASH").id)

        assert quantity.waste.drying == 0
        assert quantity.available_kg == pytest.approx(990.0)


@pytest.mark.asyncio
class TestNonConformances:

    async def test_raise_and_resolve(self, session_factory, operator, lot_run):
        records = StepRecordService(session_factory, operator)
        sort = step_of(lot_run, "SORT")

        nc = await records.raise_non_conformance(
            sort.id, NonConformanceCreate(nc_type="moisture", description="above 7%", severity="HIGH"),
        )
        resolved = await records.resolve_non_conformance(nc.id, "re-dried for 6h")

        assert resolved.resolved is True
        assert resolved.resolved_at is not None
        assert resolved.corrective_action == "re-dried for 6h"
        with pytest.raises(BusinessLogicError, match="already resolved"):
            await records.resolve_non_conformance(nc.id)
        assert await count(session_factory, NonConformance) == 1


@pytest.mark.asyncio
class TestStepReopening:

    async def test_leaving_completed_clears_completed_at(self, lot_runs, lot_run):
        wash = step_of(lot_run, "WASH")
        await lot_runs.advance_step(wash.id, StepRunPatch(status="COMPLETED"))

        reopened = step_of(await lot_runs.advance_step(wash.id, StepRunPatch(status="IN_PROGRESS")), "WASH")

        assert reopened.status == "IN_PROGRESS"
        assert reopened.completed_at is None
        assert reopened.started_at is not None


@pytest.mark.asyncio
class TestQualityCheckedSteps:

    @pytest_asyncio.fixture
    async def qc_run(self, session_factory, operator, lot_runs, supply_batch):
        process = await ProcessService(session_factory, operator).create_process(ProcessCreate(
            code="ALMOND-QC",
            name="Almond line with QC",
            steps=[
                ProcessStepCreate(seq=1, step_code="WASH", step_name="Washing", default_location_id="LOC-WASH"),
                ProcessStepCreate(seq=2, step_code="SORT", step_name="Sorting", requires_qc=True),
            ],
        ))
        return await lot_runs.ensure_run(supply_batch.id, process.id)

    async def test_steps_start_at_their_default_location(self, qc_run):
        assert step_of(qc_run, "WASH").location_id == "LOC-WASH"
        assert step_of(qc_run, "SORT").location_id is None

    async def test_completion_needs_a_passing_check(self, session_factory, operator, lot_runs, qc_run):
        sort = step_of(qc_run, "SORT")
        records = StepRecordService(session_factory, operator)

        with pytest.raises(BusinessLogicError, match="passing quality check is required before completing Sorting"):
            await lot_runs.advance_step(sort.id, StepRunPatch(status="COMPLETED"))

        failed = await records.save_quality_check(sort.id, QualityCheckCreate(items=[
            QualityScore(parameter_code="colour", score=3),
            QualityScore(parameter_code="broken", score=2, remarks="too many halves"),
        ]))
        assert failed.status == "FAIL"
        assert failed.overall_score == pytest.approx(2.5)

        with pytest.raises(BusinessLogicError, match="passing quality check"):
            await lot_runs.advance_step(sort.id, StepRunPatch(status="COMPLETED"))

        passed = await records.save_quality_check(sort.id, QualityCheckCreate(items=[
            QualityScore(parameter_code="colour", score=3),
            QualityScore(parameter_code="broken", score=3),
            QualityScore(parameter_code="odour", score=4),
        ]))
        assert passed.id == failed.id
        assert passed.status == "PASS"
        assert passed.overall_score == pytest.approx(3.0)
        assert [i.parameter_code for i in passed.items] == ["broken", "colour", "odour"]
        assert passed.evaluated_by == operator.id

        done = await lot_runs.advance_step(sort.id, StepRunPatch(status="COMPLETED"))
        assert step_of(done, "SORT").status == "COMPLETED"

    async def test_steps_without_qc_flag_complete_freely(self, lot_runs, qc_run):
        done = await lot_runs.advance_step(step_of(qc_run, "WASH").id, StepRunPatch(status="COMPLETED"))

        assert step_of(done, "WASH").status == "COMPLETED"

    async def test_duplicate_parameter_rejected(self, session_factory, operator, qc_run):
        with pytest.raises(BusinessLogicError, match="scored once"):
            await StepRecordService(session_factory, operator).save_quality_check(
                step_of(qc_run, "SORT").id,
                QualityCheckCreate(items=[
                    QualityScore(parameter_code="colour", score=3),
                    QualityScore(parameter_code="colour", score=1),
                ]),
            )
