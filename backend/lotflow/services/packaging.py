"""Packaging stage — the aggregate behind one PACK step run.

``PackagingService`` owns the packaging run and everything hanging off
it.  It keeps a frozen ``PackagingSnapshot`` that is re-queried after
every write; the metal-check gate and storage allocation services work
on the same aggregate and refresh it the same way.

Pack entries and metal-check attempts create the packaging run on first
use.  Weight checks, photos and waste need the run to exist already.

A pack entry is accepted only while the latest metal-check attempt for
its output is PASS; the governing attempt is copied onto the entry and
never updated afterwards.  Its mass may not exceed what is left of the
output after earlier entries, and the output must come from the same
lot run as the PACK step.
"""

import logging

from sqlalchemy import select

from lotflow.middleware.exceptions import BusinessLogicError, ResourceNotFoundError
from lotflow.models.lot_run import StepRun
from lotflow.models.metal_check import MetalCheckAttempt, MetalCheckRejection
from lotflow.models.packaging import (
    PackagingPhoto,
    PackagingRun,
    PackagingWaste,
    PackagingWeightCheck,
    PackEntry,
    StorageAllocation,
)
from lotflow.models.process import ProcessStep
from lotflow.models.sorting import SortingOutput
from lotflow.schemas.packaging import (
    MetalCheckAttemptOut,
    PackagingRunFields,
    PackagingRunOut,
    PackagingSnapshot,
    PackagingWasteCreate,
    PackagingWasteOut,
    PackEntryCreate,
    PackEntryOut,
    PhotoCreate,
    PhotoOut,
    RejectionOut,
    StorageAllocationOut,
    WeightCheckCreate,
    WeightCheckOut,
    WeightCheckUpdate,
)
from lotflow.services import ledger
from lotflow.services.base import Store
from lotflow.utils.activity import log_activity
from lotflow.utils.identity import Operator

logger = logging.getLogger(__name__)

PHOTO_TYPES = ("product", "label", "pallet")


class PackagingService:
    def __init__(self, session_factory, step_run_id: str, operator: Operator | None = None):
        self.store = Store(session_factory)
        self.step_run_id = step_run_id
        self.operator = operator or Operator.system()
        self.lot_run_id: str | None = None
        self.snapshot = PackagingSnapshot(step_run_id=step_run_id)

    # ── Aggregate ────────────────────────────────────────────

    async def load(self) -> PackagingSnapshot:
        step = await self.store.get_or_404(StepRun, self.step_run_id, "Step run")
        definition = await self.store.get(ProcessStep, step.process_step_id)
        if definition is None or definition.step_code != "PACK":
            raise BusinessLogicError("Packaging can only be recorded on a packaging step")
        self.lot_run_id = step.lot_run_id
        return await self.refresh()

    async def _find_run(self) -> PackagingRun | None:
        return await self.store.first(
            select(PackagingRun).where(PackagingRun.step_run_id == self.step_run_id)
        )

    async def refresh(self) -> PackagingSnapshot:
        """Re-query the packaging run and all its children."""
        run = await self._find_run()
        if run is None:
            self.snapshot = PackagingSnapshot(step_run_id=self.step_run_id)
            return self.snapshot

        def owned(model):
            return self.store.find(
                model, model.packaging_run_id == run.id, order_by=model.created_at,
            )

        attempts = await self.store.find(
            MetalCheckAttempt,
            MetalCheckAttempt.packaging_run_id == run.id,
            order_by=MetalCheckAttempt.attempt_no,
        )
        rejections = []
        if attempts:
            rejections = await self.store.find(
                MetalCheckRejection,
                MetalCheckRejection.attempt_id.in_([a.id for a in attempts]),
                order_by=MetalCheckRejection.created_at,
            )

        self.snapshot = PackagingSnapshot(
            step_run_id=self.step_run_id,
            run=PackagingRunOut.model_validate(run),
            weight_checks=tuple(WeightCheckOut.model_validate(r) for r in await owned(PackagingWeightCheck)),
            photos=tuple(PhotoOut.model_validate(r) for r in await owned(PackagingPhoto)),
            waste=tuple(PackagingWasteOut.model_validate(r) for r in await owned(PackagingWaste)),
            metal_checks=tuple(MetalCheckAttemptOut.model_validate(a) for a in attempts),
            rejections=tuple(RejectionOut.model_validate(r) for r in rejections),
            pack_entries=tuple(PackEntryOut.model_validate(r) for r in await owned(PackEntry)),
            allocations=tuple(StorageAllocationOut.model_validate(r) for r in await owned(StorageAllocation)),
        )
        return self.snapshot

    def require_run(self, what: str) -> PackagingRunOut:
        if self.snapshot.run is None:
            raise BusinessLogicError(f"Packaging run must be created before adding {what}")
        return self.snapshot.run

    async def ensure_packaging_run(self) -> str:
        """Id of this step run's packaging run, creating an empty one if needed."""
        if self.snapshot.run is not None:
            return self.snapshot.run.id
        existing = await self._find_run()
        if existing is not None:
            await self.refresh()
            return existing.id
        run = await self.store.insert(PackagingRun(step_run_id=self.step_run_id))
        logger.info("Created packaging run %s for step run %s", run.id, self.step_run_id)
        await self.refresh()
        return run.id

    async def save_packaging_run(self, fields: PackagingRunFields) -> PackagingRunOut:
        """Create or update the packaging run's quality fields."""
        values = fields.model_dump(exclude_unset=True)
        existing = await self._find_run()
        async with self.store.write() as db:
            if existing is None:
                run = PackagingRun(step_run_id=self.step_run_id, **values)
                db.add(run)
                await db.flush()
                action = "created"
            else:
                run = await db.get(PackagingRun, existing.id)
                for field, value in values.items():
                    setattr(run, field, value)
                action = "updated"
            await log_activity(
                db, self.operator, action=action, entity_type="packaging_run",
                entity_id=run.id, details={"fields": sorted(values)},
            )
        await self.refresh()
        return self.snapshot.run

    async def sorting_output(self, output_id: str) -> SortingOutput:
        """A sorting output from this packaging step's own lot run."""
        if self.lot_run_id is None:
            await self.load()
        output = await self.store.get_or_404(SortingOutput, output_id, "Sorting output")
        source = await self.store.get(StepRun, output.step_run_id)
        if source is None or source.lot_run_id != self.lot_run_id:
            raise BusinessLogicError(f"Sorting output {output_id} belongs to another lot run")
        return output

    async def entries_for_output(self, output_id: str) -> list[PackEntry]:
        """Pack entries made from an output, across every packaging run."""
        return await self.store.find(PackEntry, PackEntry.sorting_output_id == output_id)

    # ── Pack entries ─────────────────────────────────────────

    async def add_pack_entry(self, body: PackEntryCreate) -> PackEntryOut:
        """Record packs made from one sorting output (metal check must be PASS)."""
        if body.quantity_kg <= 0:
            raise BusinessLogicError("Packed quantity must be greater than zero")
        if body.pack_size_kg is not None and body.pack_size_kg <= 0:
            raise BusinessLogicError("Pack size must be greater than zero")
        output = await self.sorting_output(body.sorting_output_id)

        run_id = await self.ensure_packaging_run()
        # Fresh history: another operator may have logged an attempt since load
        await self.refresh()
        history = ledger.attempts_for(self.snapshot.metal_checks, body.sorting_output_id)
        governing = history[-1] if history else None
        if governing is None or governing.status != "PASS":
            raise BusinessLogicError("Metal detection must pass before packing this output.")

        remaining = ledger.wip_remaining_kg(
            output.quantity_kg, await self.entries_for_output(output.id),
        )
        if round(body.quantity_kg, 3) > remaining:
            raise BusinessLogicError(
                f"Quantity cannot exceed remaining {remaining} kg for this WIP"
            )

        pack_count, remainder = ledger.pack_breakdown(body.quantity_kg, body.pack_size_kg)
        entry = PackEntry(
            packaging_run_id=run_id,
            sorting_output_id=body.sorting_output_id,
            pack_identifier=body.pack_identifier,
            packing_type=body.packing_type,
            pack_size_kg=body.pack_size_kg,
            quantity_kg=body.quantity_kg,
            pack_count=pack_count,
            remainder_kg=remainder,
            metal_check_status=governing.status,
            metal_check_attempts=len(history),
            metal_check_last_id=governing.id,
            metal_check_last_checked_at=governing.checked_at,
            metal_check_last_checked_by=governing.checked_by,
            created_by=self.operator.id,
        )
        async with self.store.write() as db:
            db.add(entry)
            await db.flush()
            await log_activity(
                db, self.operator, action="created", entity_type="pack_entry",
                entity_id=entry.id, entity_code=entry.pack_identifier,
                summary=f"Packed {entry.quantity_kg} kg as {pack_count} pack(s)",
            )
        await self.refresh()
        return self.pack_entry(entry.id)

    def pack_entry(self, entry_id: str) -> PackEntryOut:
        for entry in self.snapshot.pack_entries:
            if entry.id == entry_id:
                return entry
        raise ResourceNotFoundError("Pack entry", entry_id)

    async def delete_pack_entry(self, entry_id: str) -> None:
        self.pack_entry(entry_id)
        allocated = await self.store.first(
            select(StorageAllocation.id).where(StorageAllocation.pack_entry_id == entry_id)
        )
        if allocated is not None:
            raise BusinessLogicError(
                "Pack entry has storage allocations; delete them first"
            )
        async with self.store.write() as db:
            entry = await db.get(PackEntry, entry_id)
            await db.delete(entry)
            await log_activity(
                db, self.operator, action="deleted", entity_type="pack_entry",
                entity_id=entry_id, entity_code=entry.pack_identifier,
            )
        await self.refresh()

    def wip_remaining_kg(self, output: SortingOutput) -> float:
        """Sorted kg of an output not yet covered by pack entries in this run."""
        entries = [e for e in self.snapshot.pack_entries if e.sorting_output_id == output.id]
        return ledger.wip_remaining_kg(output.quantity_kg, entries)

    # ── Weight checks ────────────────────────────────────────

    async def add_weight_check(self, body: WeightCheckCreate) -> WeightCheckOut:
        run = self.require_run("weight checks")
        check = await self.store.insert(
            PackagingWeightCheck(packaging_run_id=run.id, **body.model_dump())
        )
        await self.refresh()
        return WeightCheckOut.model_validate(check)

    async def update_weight_check(self, check_id: str, body: WeightCheckUpdate) -> WeightCheckOut:
        self._owned(self.snapshot.weight_checks, check_id, "Weight check")
        check = await self.store.update(
            PackagingWeightCheck, check_id, body.model_dump(exclude_unset=True),
        )
        await self.refresh()
        return WeightCheckOut.model_validate(check)

    async def delete_weight_check(self, check_id: str) -> None:
        self._owned(self.snapshot.weight_checks, check_id, "Weight check")
        await self.store.delete(PackagingWeightCheck, check_id)
        await self.refresh()

    # ── Photos ───────────────────────────────────────────────

    async def add_photo(self, body: PhotoCreate) -> PhotoOut:
        run = self.require_run("photos")
        if body.photo_type not in PHOTO_TYPES:
            raise BusinessLogicError(f"Photo type must be one of {', '.join(PHOTO_TYPES)}")
        photo = await self.store.insert(
            PackagingPhoto(packaging_run_id=run.id, **body.model_dump())
        )
        await self.refresh()
        return PhotoOut.model_validate(photo)

    async def delete_photo(self, photo_id: str) -> None:
        self._owned(self.snapshot.photos, photo_id, "Photo")
        await self.store.delete(PackagingPhoto, photo_id)
        await self.refresh()

    # ── Waste ────────────────────────────────────────────────

    async def add_waste(self, body: PackagingWasteCreate) -> PackagingWasteOut:
        run = self.require_run("waste")
        if body.quantity_kg <= 0:
            raise BusinessLogicError("Waste quantity must be greater than zero")
        waste = await self.store.insert(
            PackagingWaste(packaging_run_id=run.id, **body.model_dump())
        )
        await self.refresh()
        return PackagingWasteOut.model_validate(waste)

    async def delete_waste(self, waste_id: str) -> None:
        self._owned(self.snapshot.waste, waste_id, "Packaging waste")
        await self.store.delete(PackagingWaste, waste_id)
        await self.refresh()

    @staticmethod
    def _owned(records, record_id: str, label: str):
        for record in records:
            if record.id == record_id:
                return record
        raise ResourceNotFoundError(label, record_id)
