"""Tests for the sorting stage."""

import pytest

from lotflow.middleware.exceptions import BusinessLogicError, ResourceNotFoundError
from lotflow.schemas.packaging import MetalCheckCreate
from lotflow.schemas.sorting import SortingOutputCreate, SortingOutputUpdate, SortingWasteCreate
from lotflow.services.metal_check import MetalCheckGate


@pytest.mark.asyncio
class TestSortingOutputs:

    async def test_add_and_update_output(self, sorting, sorted_output):
        assert sorted_output.quantity_kg == pytest.approx(500.0)
        assert sorted_output.moisture_percent == pytest.approx(5.5)

        updated = await sorting.update_output(
            sorted_output.id, SortingOutputUpdate(quantity_kg=480.0, remarks="re-weighed"),
        )

        assert updated.quantity_kg == pytest.approx(480.0)
        assert updated.remarks == "re-weighed"
        assert updated.product_id == "almond-kernel"

    async def test_outputs_are_not_reconciled_against_input(self, sorting, sorted_output):
        # the batch holds 1000 kg; outputs may exceed it until reconciled by hand
        await sorting.add_output(SortingOutputCreate(product_id="almond-kernel", quantity_kg=900.0))

        assert sum(o.quantity_kg for o in sorting.snapshot.outputs) == pytest.approx(1400.0)

    async def test_waste_per_output(self, sorting, sorted_output):
        waste = await sorting.add_waste(sorted_output.id, SortingWasteCreate(waste_type="shells", quantity_kg=22.5))

        assert sorting.snapshot.waste == (waste,)

        await sorting.delete_waste(waste.id)
        assert sorting.snapshot.waste == ()

    async def test_waste_for_unknown_output(self, sorting):
        with pytest.raises(ResourceNotFoundError):
            await sorting.add_waste("nope", SortingWasteCreate(waste_type="shells", quantity_kg=1))

    async def test_delete_output_removes_its_waste(self, sorting, sorted_output):
        await sorting.add_waste(sorted_output.id, SortingWasteCreate(waste_type="dust", quantity_kg=2))

        await sorting.delete_output(sorted_output.id)

        assert sorting.snapshot.outputs == ()
        assert sorting.snapshot.waste == ()

    async def test_delete_refused_once_metal_checked(self, sorting, sorted_output, packaging):
        await MetalCheckGate(packaging).record_attempt(
            MetalCheckCreate(sorting_output_id=sorted_output.id, status="PASS")
        )

        with pytest.raises(BusinessLogicError, match="cannot be deleted"):
            await sorting.delete_output(sorted_output.id)
