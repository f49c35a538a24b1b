"""Pydantic schemas for the sorting stage."""

from datetime import datetime

from pydantic import BaseModel, Field

from lotflow.schemas.common import Snapshot


class SortingOutputCreate(BaseModel):
    product_id: str
    quantity_kg: float = Field(..., gt=0)
    moisture_percent: float | None = Field(None, ge=0, le=100)
    remarks: str | None = None


class SortingOutputUpdate(BaseModel):
    product_id: str | None = None
    quantity_kg: float | None = Field(None, gt=0)
    moisture_percent: float | None = Field(None, ge=0, le=100)
    remarks: str | None = None


class SortingWasteCreate(BaseModel):
    waste_type: str = Field(..., max_length=100)
    quantity_kg: float = Field(..., gt=0)


class SortingWasteOut(Snapshot):
    id: str
    sorting_output_id: str
    waste_type: str
    quantity_kg: float


class SortingOutputOut(Snapshot):
    id: str
    step_run_id: str
    product_id: str
    quantity_kg: float
    moisture_percent: float | None = None
    remarks: str | None = None
    created_at: datetime


class SortingSnapshot(Snapshot):
    step_run_id: str
    outputs: tuple[SortingOutputOut, ...] = ()
    waste: tuple[SortingWasteOut, ...] = ()
