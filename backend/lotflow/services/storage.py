"""Storage allocation — bundling packs into BOX / BAG / SHOP_PACKING units.

For every pack entry:

    remaining = pack_count − Σ total_packs of its allocations   (≥ 0)

Allocation writes lock the pack-entry row and re-check ``remaining``
inside the same write, so two operators cannot both take the last
packs.  ``remaining`` itself is never stored.
"""

import io
import json
import logging

import segno
from sqlalchemy import select

from lotflow.config import settings
from lotflow.middleware.exceptions import BusinessLogicError, ResourceNotFoundError
from lotflow.models.packaging import PackEntry, StorageAllocation
from lotflow.schemas.packaging import (
    PackEntryCapacity,
    StorageAllocationCreate,
    StorageAllocationOut,
    StorageAllocationUpdate,
)
from lotflow.services import ledger
from lotflow.services.packaging import PackagingService
from lotflow.utils.activity import log_activity

logger = logging.getLogger(__name__)

STORAGE_TYPES = ("BOX", "BAG", "SHOP_PACKING")


def _validate_units(storage_type: str, units_count: int, packs_per_unit: int) -> None:
    if storage_type not in STORAGE_TYPES:
        raise BusinessLogicError(f"Storage type must be one of {', '.join(STORAGE_TYPES)}")
    if units_count <= 0:
        raise BusinessLogicError("Units count must be greater than zero")
    if packs_per_unit <= 0:
        raise BusinessLogicError("Packs per unit must be greater than zero")


class StorageService:
    def __init__(self, packaging: PackagingService):
        self.packaging = packaging
        self.store = packaging.store

    def allocations_for(self, entry_id: str) -> list[StorageAllocationOut]:
        return [a for a in self.packaging.snapshot.allocations if a.pack_entry_id == entry_id]

    def remaining_packs(self, entry_id: str) -> int:
        entry = self.packaging.pack_entry(entry_id)
        return ledger.remaining_packs(entry.pack_count, self.allocations_for(entry_id))

    def capacity(self, entry_id: str) -> PackEntryCapacity:
        entry = self.packaging.pack_entry(entry_id)
        allocations = self.allocations_for(entry_id)
        return PackEntryCapacity(
            pack_entry_id=entry_id,
            pack_count=entry.pack_count,
            allocated_packs=ledger.allocated_packs(allocations),
            remaining_packs=ledger.remaining_packs(entry.pack_count, allocations),
        )

    def allocation(self, allocation_id: str) -> StorageAllocationOut:
        for allocation in self.packaging.snapshot.allocations:
            if allocation.id == allocation_id:
                return allocation
        raise ResourceNotFoundError("Storage allocation", allocation_id)

    async def _locked_entry(self, db, entry_id: str) -> PackEntry:
        result = await db.execute(
            select(PackEntry).where(PackEntry.id == entry_id).with_for_update()
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise ResourceNotFoundError("Pack entry", entry_id)
        if not entry.pack_size_kg or entry.pack_size_kg <= 0:
            raise BusinessLogicError("Pack size must be greater than zero to allocate storage")
        return entry

    async def _check_capacity(
        self, db, entry: PackEntry, requested: int, exclude_id: str | None = None,
    ) -> None:
        result = await db.execute(
            select(StorageAllocation).where(StorageAllocation.pack_entry_id == entry.id)
        )
        remaining = ledger.remaining_packs(
            entry.pack_count, result.scalars().all(), exclude_id=exclude_id,
        )
        if requested > remaining:
            raise BusinessLogicError(
                f"Requested {requested} packs exceeds remaining {remaining} pack(s) "
                f"for {entry.pack_identifier}"
            )

    async def add_allocation(self, body: StorageAllocationCreate) -> StorageAllocationOut:
        self.packaging.pack_entry(body.pack_entry_id)
        _validate_units(body.storage_type, body.units_count, body.packs_per_unit)
        requested = body.units_count * body.packs_per_unit

        async with self.store.write() as db:
            entry = await self._locked_entry(db, body.pack_entry_id)
            await self._check_capacity(db, entry, requested)
            allocation = StorageAllocation(
                packaging_run_id=entry.packaging_run_id,
                pack_entry_id=entry.id,
                storage_type=body.storage_type,
                units_count=body.units_count,
                packs_per_unit=body.packs_per_unit,
                total_packs=requested,
                total_quantity_kg=round(requested * entry.pack_size_kg, 3),
                box_unit_code=body.box_unit_code,
                notes=body.notes,
            )
            db.add(allocation)
            await db.flush()
            await log_activity(
                db, self.packaging.operator, action="allocated",
                entity_type="storage_allocation", entity_id=allocation.id,
                entity_code=allocation.box_unit_code or entry.pack_identifier,
                summary=(
                    f"Allocated {requested} pack(s) of {entry.pack_identifier} "
                    f"into {body.units_count} {body.storage_type}"
                ),
            )
        await self.packaging.refresh()
        return self.allocation(allocation.id)

    async def update_allocation(
        self, allocation_id: str, body: StorageAllocationUpdate,
    ) -> StorageAllocationOut:
        current = self.allocation(allocation_id)
        values = body.model_dump(exclude_unset=True)
        cleared = [
            k for k in ("storage_type", "units_count", "packs_per_unit")
            if k in values and values[k] is None
        ]
        if cleared:
            raise BusinessLogicError(f"{', '.join(cleared)} cannot be cleared")
        storage_type = values["storage_type"] if "storage_type" in values else current.storage_type
        units_count = values["units_count"] if "units_count" in values else current.units_count
        packs_per_unit = (
            values["packs_per_unit"] if "packs_per_unit" in values else current.packs_per_unit
        )
        _validate_units(storage_type, units_count, packs_per_unit)
        requested = units_count * packs_per_unit

        async with self.store.write() as db:
            entry = await self._locked_entry(db, current.pack_entry_id)
            await self._check_capacity(db, entry, requested, exclude_id=allocation_id)
            allocation = await db.get(StorageAllocation, allocation_id)
            if allocation is None:
                raise ResourceNotFoundError("Storage allocation", allocation_id)
            for field, value in values.items():
                setattr(allocation, field, value)
            allocation.storage_type = storage_type
            allocation.units_count = units_count
            allocation.packs_per_unit = packs_per_unit
            allocation.total_packs = requested
            allocation.total_quantity_kg = round(requested * entry.pack_size_kg, 3)
            await log_activity(
                db, self.packaging.operator, action="updated",
                entity_type="storage_allocation", entity_id=allocation_id,
                summary=f"Allocation now {requested} pack(s)",
            )
        await self.packaging.refresh()
        return self.allocation(allocation_id)

    async def delete_allocation(self, allocation_id: str) -> None:
        current = self.allocation(allocation_id)
        async with self.store.write() as db:
            allocation = await db.get(StorageAllocation, allocation_id)
            if allocation is not None:
                await db.delete(allocation)
            await log_activity(
                db, self.packaging.operator, action="deallocated",
                entity_type="storage_allocation", entity_id=allocation_id,
                summary=f"Released {current.total_packs} pack(s)",
            )
        await self.packaging.refresh()

    def storage_label(self, allocation_id: str) -> bytes:
        """QR code (SVG) identifying a storage unit and its contents."""
        allocation = self.allocation(allocation_id)
        entry = self.packaging.pack_entry(allocation.pack_entry_id)
        qr_data = json.dumps({
            "type": "storage_unit",
            "allocation_id": allocation.id,
            "unit": allocation.box_unit_code,
            "storage_type": allocation.storage_type,
            "pack": entry.pack_identifier,
            "units": allocation.units_count,
            "packs_per_unit": allocation.packs_per_unit,
            "kg": allocation.total_quantity_kg,
        }, separators=(",", ":"))

        qr = segno.make(qr_data)
        buf = io.BytesIO()
        qr.save(buf, kind="svg", scale=settings.label_scale, dark="#15803d")
        return buf.getvalue()
