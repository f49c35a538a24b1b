"""Step run records router — sorting, step waste, non-conformances and QC.

Endpoints:
    GET    /api/step-runs/{step_run_id}/sorting                            Outputs + waste
    POST   /api/step-runs/{step_run_id}/sorting/outputs                    Add WIP output
    PATCH  /api/step-runs/{step_run_id}/sorting/outputs/{output_id}        Edit output
    DELETE /api/step-runs/{step_run_id}/sorting/outputs/{output_id}        Remove output
    POST   /api/step-runs/{step_run_id}/sorting/outputs/{output_id}/waste  Add waste to output
    DELETE /api/step-runs/{step_run_id}/sorting/waste/{waste_id}           Remove waste

    GET    /api/step-runs/{step_run_id}/waste                              Wash / dry / metal waste
    POST   /api/step-runs/{step_run_id}/waste
    DELETE /api/step-runs/{step_run_id}/waste/{waste_id}

    GET    /api/step-runs/{step_run_id}/non-conformances
    POST   /api/step-runs/{step_run_id}/non-conformances
    POST   /api/step-runs/{step_run_id}/non-conformances/{nc_id}/resolve

    GET    /api/step-runs/{step_run_id}/quality-check                       Scored QC evaluation
    PUT    /api/step-runs/{step_run_id}/quality-check                       Create / replace it
"""

from fastapi import APIRouter, Body, Depends, status

from lotflow.deps import get_sorting, get_step_records
from lotflow.schemas.common import Deleted
from lotflow.schemas.lot_run import (
    NonConformanceCreate,
    NonConformanceOut,
    QualityCheckCreate,
    QualityCheckOut,
    StepWasteCreate,
    StepWasteOut,
)
from lotflow.schemas.sorting import (
    SortingOutputCreate,
    SortingOutputOut,
    SortingOutputUpdate,
    SortingSnapshot,
    SortingWasteCreate,
    SortingWasteOut,
)
from lotflow.services.sorting import SortingService
from lotflow.services.step_records import StepRecordService

router = APIRouter()


# ── Sorting ──────────────────────────────────────────────────

@router.get("/{step_run_id}/sorting", response_model=SortingSnapshot)
async def sorting_snapshot(service: SortingService = Depends(get_sorting)):
    return service.snapshot


@router.post(
    "/{step_run_id}/sorting/outputs",
    response_model=SortingOutputOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_output(body: SortingOutputCreate, service: SortingService = Depends(get_sorting)):
    return await service.add_output(body)


@router.patch("/{step_run_id}/sorting/outputs/{output_id}", response_model=SortingOutputOut)
async def update_output(
    output_id: str,
    body: SortingOutputUpdate,
    service: SortingService = Depends(get_sorting),
):
    return await service.update_output(output_id, body)


@router.delete("/{step_run_id}/sorting/outputs/{output_id}", response_model=Deleted)
async def delete_output(output_id: str, service: SortingService = Depends(get_sorting)):
    await service.delete_output(output_id)
    return Deleted(id=output_id)


@router.post(
    "/{step_run_id}/sorting/outputs/{output_id}/waste",
    response_model=SortingWasteOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_sorting_waste(
    output_id: str,
    body: SortingWasteCreate,
    service: SortingService = Depends(get_sorting),
):
    return await service.add_waste(output_id, body)


@router.delete("/{step_run_id}/sorting/waste/{waste_id}", response_model=Deleted)
async def delete_sorting_waste(waste_id: str, service: SortingService = Depends(get_sorting)):
    await service.delete_waste(waste_id)
    return Deleted(id=waste_id)


# ── Step waste ───────────────────────────────────────────────

@router.get("/{step_run_id}/waste", response_model=list[StepWasteOut])
async def list_step_waste(step_run_id: str, service: StepRecordService = Depends(get_step_records)):
    return await service.list_waste(step_run_id)


@router.post(
    "/{step_run_id}/waste",
    response_model=StepWasteOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_step_waste(
    step_run_id: str,
    body: StepWasteCreate,
    service: StepRecordService = Depends(get_step_records),
):
    return await service.add_waste(step_run_id, body)


@router.delete("/{step_run_id}/waste/{waste_id}", response_model=Deleted)
async def delete_step_waste(
    step_run_id: str,
    waste_id: str,
    service: StepRecordService = Depends(get_step_records),
):
    await service.delete_waste(step_run_id, waste_id)
    return Deleted(id=waste_id)


# ── Non-conformances ─────────────────────────────────────────

@router.get("/{step_run_id}/non-conformances", response_model=list[NonConformanceOut])
async def list_non_conformances(
    step_run_id: str,
    service: StepRecordService = Depends(get_step_records),
):
    return await service.list_non_conformances(step_run_id)


@router.post(
    "/{step_run_id}/non-conformances",
    response_model=NonConformanceOut,
    status_code=status.HTTP_201_CREATED,
)
async def raise_non_conformance(
    step_run_id: str,
    body: NonConformanceCreate,
    service: StepRecordService = Depends(get_step_records),
):
    return await service.raise_non_conformance(step_run_id, body)


@router.post(
    "/{step_run_id}/non-conformances/{nc_id}/resolve",
    response_model=NonConformanceOut,
)
async def resolve_non_conformance(
    nc_id: str,
    corrective_action: str | None = Body(None, embed=True),
    service: StepRecordService = Depends(get_step_records),
):
    return await service.resolve_non_conformance(nc_id, corrective_action)


# ── Quality checks ───────────────────────────────────────────

@router.get("/{step_run_id}/quality-check", response_model=QualityCheckOut)
async def get_quality_check(
    step_run_id: str,
    service: StepRecordService = Depends(get_step_records),
):
    return await service.get_quality_check(step_run_id)


@router.put("/{step_run_id}/quality-check", response_model=QualityCheckOut)
async def save_quality_check(
    step_run_id: str,
    body: QualityCheckCreate,
    service: StepRecordService = Depends(get_step_records),
):
    return await service.save_quality_check(step_run_id, body)
