"""Tests for storage allocation capacity rules."""

import pytest
import pytest_asyncio

from lotflow.middleware.exceptions import BusinessLogicError
from lotflow.schemas.packaging import (
    MetalCheckCreate,
    PackEntryCreate,
    StorageAllocationCreate,
    StorageAllocationUpdate,
)
from lotflow.services.metal_check import MetalCheckGate
from lotflow.services.storage import StorageService


@pytest_asyncio.fixture
async def pack_entry(packaging, sorted_output):
    """100 packs of 5 kg, cleared by a passing metal check."""
    await MetalCheckGate(packaging).record_attempt(
        MetalCheckCreate(sorting_output_id=sorted_output.id, status="PASS")
    )
    return await packaging.add_pack_entry(PackEntryCreate(
        sorting_output_id=sorted_output.id,
        pack_identifier="PK-100",
        quantity_kg=500.0,
        packing_type="vacuum bag",
        pack_size_kg=5.0,
    ))


def boxes(entry_id, units, per_unit, storage_type="BOX", code=None):
    return StorageAllocationCreate(
        pack_entry_id=entry_id,
        storage_type=storage_type,
        units_count=units,
        packs_per_unit=per_unit,
        box_unit_code=code,
    )


@pytest.mark.asyncio
class TestStorageAllocation:

    async def test_hundred_packs_scenario(self, packaging, pack_entry):
        storage = StorageService(packaging)

        first = await storage.add_allocation(boxes(pack_entry.id, 10, 8))

        assert first.total_packs == 80
        assert first.total_quantity_kg == pytest.approx(400.0)
        assert storage.remaining_packs(pack_entry.id) == 20

        with pytest.raises(BusinessLogicError, match="remaining 20 pack"):
            await storage.add_allocation(boxes(pack_entry.id, 3, 8))

        assert storage.remaining_packs(pack_entry.id) == 20

    async def test_exact_fill_is_allowed(self, packaging, pack_entry):
        storage = StorageService(packaging)

        await storage.add_allocation(boxes(pack_entry.id, 10, 8))
        await storage.add_allocation(boxes(pack_entry.id, 4, 5, storage_type="BAG"))

        assert storage.remaining_packs(pack_entry.id) == 0
        capacity = storage.capacity(pack_entry.id)
        assert capacity.allocated_packs == 100

    async def test_delete_returns_exactly_its_packs(self, packaging, pack_entry):
        storage = StorageService(packaging)
        await storage.add_allocation(boxes(pack_entry.id, 5, 10))
        second = await storage.add_allocation(boxes(pack_entry.id, 3, 6, storage_type="SHOP_PACKING"))
        before = storage.remaining_packs(pack_entry.id)

        await storage.delete_allocation(second.id)

        assert storage.remaining_packs(pack_entry.id) == before + second.total_packs

    async def test_update_excludes_the_edited_allocation(self, packaging, pack_entry):
        storage = StorageService(packaging)
        allocation = await storage.add_allocation(boxes(pack_entry.id, 10, 8))

        # 100 packs fit once the allocation's own 80 are not counted against it
        updated = await storage.update_allocation(
            allocation.id, StorageAllocationUpdate(units_count=10, packs_per_unit=10),
        )

        assert updated.total_packs == 100
        assert updated.total_quantity_kg == pytest.approx(500.0)
        assert storage.remaining_packs(pack_entry.id) == 0

    async def test_update_keeps_fields_it_does_not_name(self, packaging, pack_entry):
        storage = StorageService(packaging)
        allocation = await storage.add_allocation(boxes(pack_entry.id, 4, 5, storage_type="BAG"))

        updated = await storage.update_allocation(allocation.id, StorageAllocationUpdate(notes="cold room 2"))

        assert (updated.storage_type, updated.units_count, updated.packs_per_unit) == ("BAG", 4, 5)
        assert updated.notes == "cold room 2"

        with pytest.raises(BusinessLogicError, match="units_count cannot be cleared"):
            await storage.update_allocation(allocation.id, StorageAllocationUpdate(units_count=None))

    async def test_update_beyond_capacity_cites_remaining(self, packaging, pack_entry):
        storage = StorageService(packaging)
        await storage.add_allocation(boxes(pack_entry.id, 5, 10))
        allocation = await storage.add_allocation(boxes(pack_entry.id, 2, 10))

        with pytest.raises(BusinessLogicError, match="remaining 50 pack"):
            await storage.update_allocation(allocation.id, StorageAllocationUpdate(units_count=6))

    async def test_entry_without_pack_size_cannot_be_allocated(self, packaging, sorted_output):
        gate = MetalCheckGate(packaging)
        await gate.record_attempt(MetalCheckCreate(sorting_output_id=sorted_output.id, status="PASS"))
        loose = await packaging.add_pack_entry(PackEntryCreate(
            sorting_output_id=sorted_output.id,
            pack_identifier="BULK-1",
            quantity_kg=120.0,
            packing_type="bulk bin",
        ))

        with pytest.raises(BusinessLogicError, match="Pack size must be greater than zero"):
            await StorageService(packaging).add_allocation(boxes(loose.id, 1, 1))

    async def test_storage_label_is_svg(self, packaging, pack_entry):
        storage = StorageService(packaging)
        allocation = await storage.add_allocation(boxes(pack_entry.id, 2, 10, code="BOX-0007"))

        svg = storage.storage_label(allocation.id)

        assert svg.startswith(b"<?xml") or b"<svg" in svg[:200]
