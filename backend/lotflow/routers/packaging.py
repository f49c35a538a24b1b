"""Packaging router — one PACK step run's packaging aggregate.

Endpoints (prefix /api/step-runs/{step_run_id}/packaging):
    GET    ""                               Full packaging snapshot
    PUT    ""                               Create / update packaging run fields
    POST   /weight-checks                   Add weight check
    PATCH  /weight-checks/{check_id}        Edit weight check
    DELETE /weight-checks/{check_id}
    POST   /photos                          Attach photo path (product | label | pallet)
    DELETE /photos/{photo_id}
    POST   /waste                           Record packaging waste
    DELETE /waste/{waste_id}
    POST   /metal-checks                    Record a metal detection attempt
    GET    /metal-checks/{output_id}        Gate status of one sorting output
    POST   /pack-entries                    Pack a metal-cleared output
    DELETE /pack-entries/{entry_id}
    GET    /pack-entries/{entry_id}/capacity
    POST   /allocations                     Allocate packs to storage units
    PATCH  /allocations/{allocation_id}
    DELETE /allocations/{allocation_id}
    GET    /allocations/{allocation_id}/label   QR label (SVG)
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response

from lotflow.deps import get_packaging
from lotflow.schemas.common import Deleted
from lotflow.schemas.packaging import (
    MetalCheckAttemptOut,
    MetalCheckCreate,
    MetalCheckStatus,
    PackagingRunFields,
    PackagingRunOut,
    PackagingSnapshot,
    PackagingWasteCreate,
    PackagingWasteOut,
    PackEntryCapacity,
    PackEntryCreate,
    PackEntryOut,
    PhotoCreate,
    PhotoOut,
    StorageAllocationCreate,
    StorageAllocationOut,
    StorageAllocationUpdate,
    WeightCheckCreate,
    WeightCheckOut,
    WeightCheckUpdate,
)
from lotflow.services.metal_check import MetalCheckGate
from lotflow.services.packaging import PackagingService
from lotflow.services.storage import StorageService

router = APIRouter()


# ── Packaging run ────────────────────────────────────────────

@router.get("", response_model=PackagingSnapshot)
async def packaging_snapshot(service: PackagingService = Depends(get_packaging)):
    return service.snapshot


@router.put("", response_model=PackagingRunOut)
async def save_packaging_run(
    body: PackagingRunFields,
    service: PackagingService = Depends(get_packaging),
):
    return await service.save_packaging_run(body)


# ── Weight checks ────────────────────────────────────────────

@router.post("/weight-checks", response_model=WeightCheckOut, status_code=status.HTTP_201_CREATED)
async def add_weight_check(body: WeightCheckCreate, service: PackagingService = Depends(get_packaging)):
    return await service.add_weight_check(body)


@router.patch("/weight-checks/{check_id}", response_model=WeightCheckOut)
async def update_weight_check(
    check_id: str,
    body: WeightCheckUpdate,
    service: PackagingService = Depends(get_packaging),
):
    return await service.update_weight_check(check_id, body)


@router.delete("/weight-checks/{check_id}", response_model=Deleted)
async def delete_weight_check(check_id: str, service: PackagingService = Depends(get_packaging)):
    await service.delete_weight_check(check_id)
    return Deleted(id=check_id)


# ── Photos ───────────────────────────────────────────────────

@router.post("/photos", response_model=PhotoOut, status_code=status.HTTP_201_CREATED)
async def add_photo(body: PhotoCreate, service: PackagingService = Depends(get_packaging)):
    return await service.add_photo(body)


@router.delete("/photos/{photo_id}", response_model=Deleted)
async def delete_photo(photo_id: str, service: PackagingService = Depends(get_packaging)):
    await service.delete_photo(photo_id)
    return Deleted(id=photo_id)


# ── Waste ────────────────────────────────────────────────────

@router.post("/waste", response_model=PackagingWasteOut, status_code=status.HTTP_201_CREATED)
async def add_waste(body: PackagingWasteCreate, service: PackagingService = Depends(get_packaging)):
    return await service.add_waste(body)


@router.delete("/waste/{waste_id}", response_model=Deleted)
async def delete_waste(waste_id: str, service: PackagingService = Depends(get_packaging)):
    await service.delete_waste(waste_id)
    return Deleted(id=waste_id)


# ── Metal detection ──────────────────────────────────────────

@router.post("/metal-checks", response_model=MetalCheckAttemptOut, status_code=status.HTTP_201_CREATED)
async def record_metal_check(body: MetalCheckCreate, service: PackagingService = Depends(get_packaging)):
    return await MetalCheckGate(service).record_attempt(body)


@router.get("/metal-checks/{output_id}", response_model=MetalCheckStatus)
async def metal_check_status(output_id: str, service: PackagingService = Depends(get_packaging)):
    gate = MetalCheckGate(service)
    return MetalCheckStatus(
        sorting_output_id=output_id,
        latest=gate.latest(output_id),
        attempts=gate.history(output_id),
        clear_to_pack=gate.is_clear_to_pack(output_id),
        failed_rejected_mass_kg=gate.failed_rejected_mass(output_id),
    )


# ── Pack entries ─────────────────────────────────────────────

@router.post("/pack-entries", response_model=PackEntryOut, status_code=status.HTTP_201_CREATED)
async def add_pack_entry(body: PackEntryCreate, service: PackagingService = Depends(get_packaging)):
    return await service.add_pack_entry(body)


@router.delete("/pack-entries/{entry_id}", response_model=Deleted)
async def delete_pack_entry(entry_id: str, service: PackagingService = Depends(get_packaging)):
    await service.delete_pack_entry(entry_id)
    return Deleted(id=entry_id)


@router.get("/pack-entries/{entry_id}/capacity", response_model=PackEntryCapacity)
async def pack_entry_capacity(entry_id: str, service: PackagingService = Depends(get_packaging)):
    return StorageService(service).capacity(entry_id)


# ── Storage allocations ──────────────────────────────────────

@router.post("/allocations", response_model=StorageAllocationOut, status_code=status.HTTP_201_CREATED)
async def add_allocation(
    body: StorageAllocationCreate,
    service: PackagingService = Depends(get_packaging),
):
    return await StorageService(service).add_allocation(body)


@router.patch("/allocations/{allocation_id}", response_model=StorageAllocationOut)
async def update_allocation(
    allocation_id: str,
    body: StorageAllocationUpdate,
    service: PackagingService = Depends(get_packaging),
):
    return await StorageService(service).update_allocation(allocation_id, body)


@router.delete("/allocations/{allocation_id}", response_model=Deleted)
async def delete_allocation(allocation_id: str, service: PackagingService = Depends(get_packaging)):
    await StorageService(service).delete_allocation(allocation_id)
    return Deleted(id=allocation_id)


@router.get("/allocations/{allocation_id}/label")
async def allocation_label(allocation_id: str, service: PackagingService = Depends(get_packaging)):
    svg = StorageService(service).storage_label(allocation_id)
    return Response(content=svg, media_type="image/svg+xml")
