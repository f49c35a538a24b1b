"""Sorting stage — WIP outputs and their waste for one SORT step run.

Sorted quantity plus waste is reconciled against the input mass by the
operator; nothing here checks that the outputs add up.
"""

import logging

from sqlalchemy import select

from lotflow.middleware.exceptions import BusinessLogicError, ResourceNotFoundError
from lotflow.models.lot_run import StepRun
from lotflow.models.metal_check import MetalCheckAttempt
from lotflow.models.packaging import PackEntry
from lotflow.models.process import ProcessStep
from lotflow.models.sorting import SortingOutput, SortingWaste
from lotflow.schemas.sorting import (
    SortingOutputCreate,
    SortingOutputOut,
    SortingOutputUpdate,
    SortingSnapshot,
    SortingWasteCreate,
    SortingWasteOut,
)
from lotflow.services.base import Store
from lotflow.utils.activity import log_activity
from lotflow.utils.identity import Operator

logger = logging.getLogger(__name__)


class SortingService:
    def __init__(self, session_factory, step_run_id: str, operator: Operator | None = None):
        self.store = Store(session_factory)
        self.step_run_id = step_run_id
        self.operator = operator or Operator.system()
        self.snapshot = SortingSnapshot(step_run_id=step_run_id)

    async def load(self) -> SortingSnapshot:
        step = await self.store.get_or_404(StepRun, self.step_run_id, "Step run")
        definition = await self.store.get(ProcessStep, step.process_step_id)
        if definition is None or definition.step_code != "SORT":
            raise BusinessLogicError("Sorting can only be recorded on a sorting step")
        return await self.refresh()

    async def refresh(self) -> SortingSnapshot:
        outputs = await self.store.find(
            SortingOutput,
            SortingOutput.step_run_id == self.step_run_id,
            order_by=SortingOutput.created_at,
        )
        waste = []
        if outputs:
            waste = await self.store.find(
                SortingWaste,
                SortingWaste.sorting_output_id.in_([o.id for o in outputs]),
                order_by=SortingWaste.created_at,
            )
        self.snapshot = SortingSnapshot(
            step_run_id=self.step_run_id,
            outputs=tuple(SortingOutputOut.model_validate(o) for o in outputs),
            waste=tuple(SortingWasteOut.model_validate(w) for w in waste),
        )
        return self.snapshot

    def output(self, output_id: str) -> SortingOutputOut:
        for output in self.snapshot.outputs:
            if output.id == output_id:
                return output
        raise ResourceNotFoundError("Sorting output", output_id)

    # ── Outputs ──────────────────────────────────────────────

    async def add_output(self, body: SortingOutputCreate) -> SortingOutputOut:
        if body.quantity_kg <= 0:
            raise BusinessLogicError("Output quantity must be greater than zero")
        output = SortingOutput(step_run_id=self.step_run_id, **body.model_dump())
        async with self.store.write() as db:
            db.add(output)
            await db.flush()
            await log_activity(
                db, self.operator, action="created", entity_type="sorting_output",
                entity_id=output.id,
                summary=f"Sorted {output.quantity_kg} kg of product {output.product_id}",
            )
        await self.refresh()
        return self.output(output.id)

    async def update_output(self, output_id: str, body: SortingOutputUpdate) -> SortingOutputOut:
        self.output(output_id)
        values = body.model_dump(exclude_unset=True)
        if values.get("quantity_kg") is not None and values["quantity_kg"] <= 0:
            raise BusinessLogicError("Output quantity must be greater than zero")
        await self.store.update(SortingOutput, output_id, values)
        await self.refresh()
        return self.output(output_id)

    async def delete_output(self, output_id: str) -> None:
        self.output(output_id)
        checks = await self.store.first(
            select(MetalCheckAttempt.id).where(MetalCheckAttempt.sorting_output_id == output_id)
        )
        packs = await self.store.first(
            select(PackEntry.id).where(PackEntry.sorting_output_id == output_id)
        )
        if checks is not None or packs is not None:
            raise BusinessLogicError(
                "Output has metal checks or pack entries and cannot be deleted"
            )
        async with self.store.write() as db:
            for waste in (await db.execute(
                select(SortingWaste).where(SortingWaste.sorting_output_id == output_id)
            )).scalars().all():
                await db.delete(waste)
            output = await db.get(SortingOutput, output_id)
            await db.delete(output)
            await log_activity(
                db, self.operator, action="deleted", entity_type="sorting_output",
                entity_id=output_id,
            )
        await self.refresh()

    # ── Waste ────────────────────────────────────────────────

    async def add_waste(self, output_id: str, body: SortingWasteCreate) -> SortingWasteOut:
        self.output(output_id)
        if body.quantity_kg <= 0:
            raise BusinessLogicError("Waste quantity must be greater than zero")
        waste = await self.store.insert(
            SortingWaste(sorting_output_id=output_id, **body.model_dump())
        )
        await self.refresh()
        return SortingWasteOut.model_validate(waste)

    async def delete_waste(self, waste_id: str) -> None:
        if not any(w.id == waste_id for w in self.snapshot.waste):
            raise ResourceNotFoundError("Sorting waste", waste_id)
        await self.store.delete(SortingWaste, waste_id)
        await self.refresh()
