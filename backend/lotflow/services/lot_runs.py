"""Lot run state machine.

A LotRun is found or created for a (supply batch, process) pair the
first time an operator starts work on it.  Step runs are then advanced
one at a time; the run completes only once every step run is COMPLETED.

Writes are independent (one session each):

  ensure_run      run insert → step-run inserts → batch PROCESSING
  complete_run    run COMPLETED → production batch → batch PROCESSED
  create_rework   rework batch → reworked-lot link → rework run + steps
                  → rework batch PROCESSING

each wrapped in a Saga so a failure part-way undoes the writes that
already landed.

If a step update cannot be saved, the operator's entries are kept in
``drafts`` (see ``draft_for``) and nothing about the run is advanced.
Drafts live on the service instance, so they only survive for callers
that hold on to it (a worker or the CLI).  The HTTP dependency builds a
fresh service per request; there the failed request is the only record
and the client keeps its own entries.

A step whose definition has ``requires_qc`` set completes only once a
passing quality check is on file for its step run.
"""

import logging
from datetime import datetime
from functools import partial

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from lotflow.middleware.exceptions import BusinessLogicError, ResourceNotFoundError
from lotflow.models.lot_run import LotRun, ProductionBatch, ReworkedLot, StepRun
from lotflow.models.packaging import PackagingRun, PackagingWaste
from lotflow.models.process import ProcessDefinition, ProcessStep
from lotflow.models.sorting import SortingOutput, SortingWaste
from lotflow.models.step_records import NonConformance, StepQualityCheck, StepWaste
from lotflow.models.supply_batch import SupplyBatch
from lotflow.schemas.lot_run import (
    AvailableQuantity,
    CompletionResult,
    LotRunDetail,
    LotRunOut,
    ProductionBatchOut,
    ReworkResult,
    StepRunOut,
    StepRunPatch,
    WasteBreakdown,
)
from lotflow.services import ledger
from lotflow.services.base import Store
from lotflow.services.inventory import InventoryGateway
from lotflow.services.saga import Saga
from lotflow.utils.activity import log_activity
from lotflow.utils.identity import Operator
from lotflow.utils.numbering import generate_code

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("IN_PROGRESS", "COMPLETED")


def _step_out(step: StepRun, definition: ProcessStep) -> StepRunOut:
    return StepRunOut(
        id=step.id,
        lot_run_id=step.lot_run_id,
        process_step_id=step.process_step_id,
        seq=definition.seq,
        step_code=definition.step_code,
        step_name=definition.step_name,
        status=step.status,
        started_at=step.started_at,
        completed_at=step.completed_at,
        performed_by=step.performed_by,
        performed_by_name=step.performed_by_name,
        location_id=step.location_id,
        quantity_out_kg=step.quantity_out_kg,
        notes=step.notes,
    )


class LotRunService:
    def __init__(self, session_factory, operator: Operator | None = None):
        self.store = Store(session_factory)
        self.inventory = InventoryGateway(self.store)
        self.operator = operator or Operator.system()
        self.snapshot: LotRunDetail | None = None
        self.drafts: dict[str, StepRunPatch] = {}

    # ── Reads ────────────────────────────────────────────────

    async def _step_rows(self, run_id: str) -> list[tuple[StepRun, ProcessStep]]:
        return await self.store.rows(
            select(StepRun, ProcessStep)
            .join(ProcessStep, ProcessStep.id == StepRun.process_step_id)
            .where(StepRun.lot_run_id == run_id)
            .order_by(ProcessStep.seq)
        )

    async def refresh(self, run_id: str | None = None) -> LotRunDetail:
        """Re-query the run and its step runs into a fresh snapshot."""
        run_id = run_id or (self.snapshot.run.id if self.snapshot else None)
        if run_id is None:
            raise ValueError("No lot run loaded")
        run = await self.store.get_or_404(LotRun, run_id, "Lot run")
        batch = await self.store.get(SupplyBatch, run.supply_batch_id)

        original_lot_no = None
        if run.original_process_lot_run_id:
            original = await self.store.get(LotRun, run.original_process_lot_run_id)
            if original is not None:
                original_batch = await self.store.get(SupplyBatch, original.supply_batch_id)
                original_lot_no = original_batch.lot_no if original_batch else None

        self.snapshot = LotRunDetail(
            run=LotRunOut.model_validate(run),
            lot_no=batch.lot_no if batch else "",
            steps=tuple(_step_out(s, d) for s, d in await self._step_rows(run.id)),
            original_lot_no=original_lot_no,
        )
        return self.snapshot

    async def get_run(self, run_id: str) -> LotRunDetail:
        return await self.refresh(run_id)

    async def find_run(self, supply_batch_id: str, process_id: str) -> LotRun | None:
        return await self.store.first(
            select(LotRun).where(
                LotRun.supply_batch_id == supply_batch_id,
                LotRun.process_id == process_id,
                LotRun.status.in_(("PENDING",) + ACTIVE_STATUSES),
            )
        )

    def draft_for(self, step_run_id: str) -> StepRunPatch | None:
        """Values entered for a step run whose last save failed."""
        return self.drafts.get(step_run_id)

    # ── ensure_run ───────────────────────────────────────────

    async def ensure_run(self, supply_batch_id: str, process_id: str) -> LotRunDetail:
        """Return the run for this lot and process, creating it on first use."""
        existing = await self.find_run(supply_batch_id, process_id)
        if existing is not None:
            return await self.refresh(existing.id)

        batch = await self.store.get_or_404(SupplyBatch, supply_batch_id, "Supply batch")
        await self.store.get_or_404(ProcessDefinition, process_id, "Process")
        steps = await self.store.find(
            ProcessStep, ProcessStep.process_id == process_id, order_by=ProcessStep.seq,
        )

        async with Saga("ensure_run") as saga:
            run = await self._start_run(saga, batch, process_id, steps)

        logger.info("Started lot run %s for lot %s", run.id, batch.lot_no)
        return await self.refresh(run.id)

    async def _start_run(
        self,
        saga: Saga,
        batch: SupplyBatch,
        process_id: str,
        steps: list[ProcessStep],
        *,
        is_rework: bool = False,
        original_run_id: str | None = None,
    ) -> LotRun:
        run = LotRun(
            supply_batch_id=batch.id,
            process_id=process_id,
            status="IN_PROGRESS",
            started_at=datetime.utcnow(),
            is_rework=is_rework,
            original_process_lot_run_id=original_run_id,
            started_by=self.operator.id,
        )
        async with self.store.write() as db:
            db.add(run)
            await db.flush()
            await log_activity(
                db, self.operator, action="created", entity_type="lot_run",
                entity_id=run.id, entity_code=batch.lot_no,
                summary=f"Started {'rework ' if is_rework else ''}run for lot {batch.lot_no}",
            )
        saga.on_undo("delete lot run", partial(self.store.delete, LotRun, run.id))

        if steps:
            await self.store.insert_all([
                StepRun(
                    lot_run_id=run.id,
                    process_step_id=s.id,
                    status="PENDING",
                    location_id=s.default_location_id,
                )
                for s in steps
            ])
            saga.on_undo(
                "delete step runs",
                partial(self.store.delete_where, StepRun, StepRun.lot_run_id == run.id),
            )

        previous = await self.inventory.mark_processing(batch.id)
        saga.on_undo("restore batch status", partial(self.inventory.set_status, batch.id, previous))
        return run

    # ── advance_step ─────────────────────────────────────────

    async def _require_quality_check(self, step: StepRun) -> None:
        definition = await self.store.get_or_404(ProcessStep, step.process_step_id, "Process step")
        if not definition.requires_qc:
            return
        check = await self.store.first(
            select(StepQualityCheck).where(StepQualityCheck.step_run_id == step.id)
        )
        if check is None or check.status != "PASS":
            raise BusinessLogicError(
                f"A passing quality check is required before completing {definition.step_name}"
            )

    async def advance_step(self, step_run_id: str, patch: StepRunPatch) -> LotRunDetail:
        """Merge a partial update into one step run."""
        step = await self.store.get_or_404(StepRun, step_run_id, "Step run")
        run = await self.store.get_or_404(LotRun, step.lot_run_id, "Lot run")

        values = patch.model_dump(exclude_unset=True)
        status = values.get("status")
        now = datetime.utcnow()

        if run.status == "COMPLETED" and status is not None and status != "COMPLETED":
            raise BusinessLogicError(
                "Lot run is completed; its steps can no longer change status"
            )

        if status == "COMPLETED" and step.status != "COMPLETED":
            await self._require_quality_check(step)

        if status in ("IN_PROGRESS", "COMPLETED"):
            if step.started_at is None and values.get("started_at") is None:
                values["started_at"] = now
            if step.performed_by is None and values.get("performed_by") is None:
                values["performed_by"] = self.operator.id
                values.setdefault("performed_by_name", self.operator.name)
        if status == "COMPLETED" and step.completed_at is None and values.get("completed_at") is None:
            values["completed_at"] = now
        elif status in ("PENDING", "IN_PROGRESS") and step.completed_at is not None:
            values["completed_at"] = None

        self.drafts[step_run_id] = patch
        try:
            async with self.store.write() as db:
                row = await db.get(StepRun, step_run_id)
                if row is None:
                    raise ResourceNotFoundError("Step run", step_run_id)
                for field, value in values.items():
                    setattr(row, field, value)
                await log_activity(
                    db, self.operator,
                    action="status_changed" if status and status != step.status else "updated",
                    entity_type="step_run", entity_id=step_run_id,
                    summary=f"Step run {step.status} → {status}" if status else "Step run updated",
                    details={k: str(v) for k, v in values.items()},
                )
        except SQLAlchemyError:
            logger.warning("Step run %s not saved; entered values kept as draft", step_run_id)
            raise
        self.drafts.pop(step_run_id, None)

        return await self.refresh(run.id)

    # ── complete_run ─────────────────────────────────────────

    async def _output_quantity(self, detail: LotRunDetail) -> float:
        for step in reversed(detail.steps):
            if step.quantity_out_kg is not None:
                return step.quantity_out_kg
        return (await self.available_quantity(detail.run.id)).available_kg

    async def complete_run(self, run_id: str) -> CompletionResult:
        detail = await self.refresh(run_id)
        if detail.run.status == "COMPLETED":
            raise BusinessLogicError("Lot run is already completed")

        pending = [s for s in detail.steps if s.status != "COMPLETED"]
        if pending:
            names = ", ".join(s.step_name for s in pending)
            raise BusinessLogicError(
                f"All steps must be completed before completing the run. Pending: {names}"
            )

        step_ids = [s.id for s in detail.steps]
        unresolved = 0
        if step_ids:
            unresolved = len(await self.store.find(
                NonConformance,
                NonConformance.step_run_id.in_(step_ids),
                NonConformance.resolved == False,  # noqa: E712
            ))
        if unresolved:
            logger.warning(
                "Completing lot run %s with %d unresolved non-conformance(s)",
                run_id, unresolved,
            )

        batch = await self.store.get_or_404(SupplyBatch, detail.run.supply_batch_id, "Supply batch")
        quantity = await self._output_quantity(detail)

        async with Saga("complete_run") as saga:
            previous_run = {"status": detail.run.status, "completed_at": detail.run.completed_at}
            await self.store.update(
                LotRun, run_id, {"status": "COMPLETED", "completed_at": datetime.utcnow()},
            )
            saga.on_undo("reopen lot run", partial(self.store.update, LotRun, run_id, previous_run))

            async with self.store.write() as db:
                code = await generate_code(db, "production")
                production = ProductionBatch(
                    batch_code=code,
                    lot_run_id=run_id,
                    supply_batch_id=batch.id,
                    product_id=batch.product_id,
                    quantity=quantity,
                    unit=batch.unit,
                )
                db.add(production)
                await db.flush()
                await log_activity(
                    db, self.operator, action="completed", entity_type="lot_run",
                    entity_id=run_id, entity_code=batch.lot_no,
                    summary=f"Completed lot {batch.lot_no}; production batch {code}",
                    details={"unresolved_non_conformances": unresolved},
                )
            saga.on_undo(
                "delete production batch",
                partial(self.store.delete, ProductionBatch, production.id),
            )

            await self.inventory.mark_processed(batch.id)

        logger.info("Lot run %s completed as %s", run_id, production.batch_code)
        return CompletionResult(
            run=await self.refresh(run_id),
            production_batch=ProductionBatchOut.model_validate(production),
            unresolved_non_conformances=unresolved,
        )

    # ── Quantity tracking ────────────────────────────────────

    async def available_quantity(
        self, run_id: str, up_to_step_run_id: str | None = None,
    ) -> AvailableQuantity:
        """Initial lot mass, waste per stage, and what is left."""
        run = await self.store.get_or_404(LotRun, run_id, "Lot run")
        batch = await self.store.get_or_404(SupplyBatch, run.supply_batch_id, "Supply batch")
        rows = await self._step_rows(run_id)

        if up_to_step_run_id is not None:
            limit = next((d.seq for s, d in rows if s.id == up_to_step_run_id), None)
            if limit is None:
                raise ResourceNotFoundError("Step run", up_to_step_run_id)
            rows = [(s, d) for s, d in rows if d.seq <= limit]
        step_ids = [s.id for s, _ in rows]

        waste = WasteBreakdown()
        if step_ids:
            step_waste = await self.store.find(StepWaste, StepWaste.step_run_id.in_(step_ids))
            by_stage = {
                stage: ledger.total_kg(w for w in step_waste if w.stage == stage)
                for stage in ("WASH", "DRY", "METAL")
            }
            sorting = await self.store.all(
                select(SortingWaste)
                .join(SortingOutput, SortingOutput.id == SortingWaste.sorting_output_id)
                .where(SortingOutput.step_run_id.in_(step_ids))
            )
            packaging = await self.store.all(
                select(PackagingWaste)
                .join(PackagingRun, PackagingRun.id == PackagingWaste.packaging_run_id)
                .where(PackagingRun.step_run_id.in_(step_ids))
            )
            waste = WasteBreakdown(
                washing=by_stage["WASH"],
                drying=by_stage["DRY"],
                metal=by_stage["METAL"],
                sorting=ledger.total_kg(sorting),
                packaging=ledger.total_kg(packaging),
            )

        initial = batch.current_qty or 0.0
        return AvailableQuantity(
            initial_kg=initial,
            waste=waste,
            available_kg=ledger.available_kg(
                initial, waste.washing, waste.drying, waste.metal, waste.packaging,
            ),
        )

    # ── Rework ───────────────────────────────────────────────

    async def reworkable_quantity(self, step_run_id: str) -> float:
        step = await self.store.get_or_404(StepRun, step_run_id, "Step run")
        run = await self.store.get_or_404(LotRun, step.lot_run_id, "Lot run")
        batch = await self.store.get_or_404(SupplyBatch, run.supply_batch_id, "Supply batch")

        step_ids = [s.id for s, _ in await self._step_rows(run.id)]
        pre_sort = await self.store.find(
            StepWaste, StepWaste.step_run_id.in_(step_ids), StepWaste.stage.in_(("WASH", "DRY")),
        )
        sorted_kg = await self.store.first(
            select(func.coalesce(func.sum(SortingOutput.quantity_kg), 0.0))
            .where(SortingOutput.step_run_id == step_run_id)
        )
        reworked_kg = await self.store.first(
            select(func.coalesce(func.sum(ReworkedLot.quantity_kg), 0.0))
            .where(ReworkedLot.step_run_id == step_run_id)
        )
        return ledger.reworkable_kg(
            batch.current_qty or 0.0, ledger.total_kg(pre_sort), sorted_kg, reworked_kg,
        )

    async def create_rework(
        self, step_run_id: str, quantity_kg: float, reason: str | None = None,
    ) -> ReworkResult:
        """Send part of a sorting step's input back through the process."""
        if quantity_kg <= 0:
            raise BusinessLogicError("Rework quantity must be greater than zero")

        step = await self.store.get_or_404(StepRun, step_run_id, "Step run")
        definition = await self.store.get_or_404(ProcessStep, step.process_step_id, "Process step")
        if definition.step_code != "SORT":
            raise BusinessLogicError("Rework can only be created from a sorting step")

        run = await self.store.get_or_404(LotRun, step.lot_run_id, "Lot run")
        batch = await self.store.get_or_404(SupplyBatch, run.supply_batch_id, "Supply batch")

        available = await self.reworkable_quantity(step_run_id)
        if quantity_kg > available:
            raise BusinessLogicError(
                f"Rework quantity {quantity_kg} kg exceeds the {available} kg still available"
            )

        steps = await self.store.find(
            ProcessStep, ProcessStep.process_id == run.process_id, order_by=ProcessStep.seq,
        )

        async with Saga("create_rework") as saga:
            async with self.store.write() as db:
                lot_no = await generate_code(db, "rework", lot_no=batch.lot_no)
                rework_batch = SupplyBatch(
                    lot_no=lot_no,
                    product_id=batch.product_id,
                    unit=batch.unit,
                    received_qty=quantity_kg,
                    current_qty=quantity_kg,
                    process_status="UNPROCESSED",
                    quality_status=batch.quality_status,
                    expiry_date=batch.expiry_date,
                )
                db.add(rework_batch)
            saga.on_undo("delete rework batch", partial(self.store.delete, SupplyBatch, rework_batch.id))

            link = await self.store.insert(ReworkedLot(
                original_supply_batch_id=batch.id,
                rework_supply_batch_id=rework_batch.id,
                step_run_id=step_run_id,
                quantity_kg=quantity_kg,
                reason=reason,
                created_by=self.operator.id,
            ))
            saga.on_undo("delete reworked lot", partial(self.store.delete, ReworkedLot, link.id))

            rework_run = await self._start_run(
                saga, rework_batch, run.process_id, steps,
                is_rework=True, original_run_id=run.id,
            )

        logger.info("Rework %s created from lot %s (%.3f kg)", lot_no, batch.lot_no, quantity_kg)
        return ReworkResult(
            rework_lot_no=lot_no,
            rework_supply_batch_id=rework_batch.id,
            reworked_lot_id=link.id,
            run=await self.refresh(rework_run.id),
        )
