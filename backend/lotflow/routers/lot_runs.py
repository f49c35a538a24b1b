"""Lot run router.

Endpoints:
    POST  /api/lot-runs                                Find or start the run for a lot + process
    GET   /api/lot-runs/{run_id}                       Run with ordered step runs
    PATCH /api/lot-runs/step-runs/{step_run_id}        Merge a partial step update
    POST  /api/lot-runs/{run_id}/complete              Complete the run (all steps COMPLETED)
    GET   /api/lot-runs/{run_id}/quantity              Initial kg, waste per stage, available kg
    POST  /api/lot-runs/step-runs/{step_run_id}/rework Send sorted material to rework
"""

from fastapi import APIRouter, Depends, Query, status

from lotflow.deps import get_lot_runs
from lotflow.schemas.lot_run import (
    AvailableQuantity,
    CompletionResult,
    EnsureRunRequest,
    LotRunDetail,
    ReworkRequest,
    ReworkResult,
    StepRunPatch,
)
from lotflow.services.lot_runs import LotRunService

router = APIRouter()


@router.post("", response_model=LotRunDetail)
async def ensure_run(body: EnsureRunRequest, service: LotRunService = Depends(get_lot_runs)):
    return await service.ensure_run(body.supply_batch_id, body.process_id)


@router.get("/{run_id}", response_model=LotRunDetail)
async def get_run(run_id: str, service: LotRunService = Depends(get_lot_runs)):
    return await service.get_run(run_id)


@router.patch("/step-runs/{step_run_id}", response_model=LotRunDetail)
async def advance_step(
    step_run_id: str,
    body: StepRunPatch,
    service: LotRunService = Depends(get_lot_runs),
):
    return await service.advance_step(step_run_id, body)


@router.post("/{run_id}/complete", response_model=CompletionResult)
async def complete_run(run_id: str, service: LotRunService = Depends(get_lot_runs)):
    return await service.complete_run(run_id)


@router.get("/{run_id}/quantity", response_model=AvailableQuantity)
async def available_quantity(
    run_id: str,
    up_to_step_run_id: str | None = Query(None),
    service: LotRunService = Depends(get_lot_runs),
):
    return await service.available_quantity(run_id, up_to_step_run_id)


@router.post(
    "/step-runs/{step_run_id}/rework",
    response_model=ReworkResult,
    status_code=status.HTTP_201_CREATED,
)
async def create_rework(
    step_run_id: str,
    body: ReworkRequest,
    service: LotRunService = Depends(get_lot_runs),
):
    return await service.create_rework(step_run_id, body.quantity_kg, body.reason)
