"""Pydantic schemas for lot runs, step runs and their side records."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from lotflow.schemas.common import Snapshot

StepStatus = Literal["PENDING", "IN_PROGRESS", "COMPLETED"]


# ── Requests ─────────────────────────────────────────────────

class EnsureRunRequest(BaseModel):
    """Payload for POST /api/lot-runs."""
    supply_batch_id: str
    process_id: str


class StepRunPatch(BaseModel):
    """Partial update merged into one step run (PATCH)."""
    status: StepStatus | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    performed_by: str | None = None
    performed_by_name: str | None = None
    location_id: str | None = None
    quantity_out_kg: float | None = Field(None, ge=0)
    notes: str | None = None


class ReworkRequest(BaseModel):
    """Payload for POST /api/lot-runs/step-runs/{step_run_id}/rework."""
    quantity_kg: float = Field(..., gt=0)
    reason: str | None = None


class StepWasteCreate(BaseModel):
    stage: Literal["WASH", "DRY", "METAL"]
    waste_type: str = Field(..., max_length=100)
    quantity_kg: float = Field(..., gt=0)
    remarks: str | None = None


class NonConformanceCreate(BaseModel):
    nc_type: str = Field(..., max_length=100)
    description: str
    severity: Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"] = "LOW"
    corrective_action: str | None = None


# ── Snapshots ────────────────────────────────────────────────

class StepRunOut(Snapshot):
    id: str
    lot_run_id: str
    process_step_id: str
    seq: int
    step_code: str
    step_name: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    performed_by: str | None = None
    performed_by_name: str | None = None
    location_id: str | None = None
    quantity_out_kg: float | None = None
    notes: str | None = None


class LotRunOut(Snapshot):
    id: str
    supply_batch_id: str
    process_id: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    is_rework: bool = False
    original_process_lot_run_id: str | None = None


class LotRunDetail(Snapshot):
    """A lot run with its ordered step runs."""
    run: LotRunOut
    lot_no: str
    steps: tuple[StepRunOut, ...] = ()
    original_lot_no: str | None = None


class ProductionBatchOut(Snapshot):
    id: str
    batch_code: str
    lot_run_id: str
    supply_batch_id: str | None = None
    product_id: str
    quantity: float
    unit: str


class CompletionResult(BaseModel):
    run: LotRunDetail
    production_batch: ProductionBatchOut
    unresolved_non_conformances: int = 0


class ReworkResult(BaseModel):
    rework_lot_no: str
    rework_supply_batch_id: str
    reworked_lot_id: str
    run: LotRunDetail


class WasteBreakdown(BaseModel):
    washing: float = 0.0
    drying: float = 0.0
    metal: float = 0.0
    sorting: float = 0.0
    packaging: float = 0.0


class AvailableQuantity(BaseModel):
    initial_kg: float
    waste: WasteBreakdown
    available_kg: float


class StepWasteOut(Snapshot):
    id: str
    step_run_id: str
    stage: str
    waste_type: str
    quantity_kg: float
    remarks: str | None = None
    created_at: datetime


class NonConformanceOut(Snapshot):
    id: str
    step_run_id: str
    nc_type: str
    description: str
    severity: str
    corrective_action: str | None = None
    resolved: bool
    resolved_at: datetime | None = None
    created_at: datetime


# ── Step quality checks ──────────────────────────────────────

class QualityScore(BaseModel):
    """One scored QC parameter: 1-3 graded (below 3 fails), 4 = not applicable."""
    parameter_code: str = Field(..., max_length=50)
    score: int = Field(..., ge=1, le=4)
    results: str | None = None
    remarks: str | None = None


class QualityCheckCreate(BaseModel):
    """Payload for PUT /api/step-runs/{step_run_id}/quality-check."""
    items: list[QualityScore] = Field(..., min_length=1)


class QualityCheckItemOut(Snapshot):
    id: str
    parameter_code: str
    score: int
    results: str | None = None
    remarks: str | None = None


class QualityCheckOut(BaseModel):
    id: str
    step_run_id: str
    status: str
    overall_score: float | None = None
    evaluated_by: str | None = None
    evaluated_by_name: str | None = None
    evaluated_at: datetime
    items: list[QualityCheckItemOut] = []
