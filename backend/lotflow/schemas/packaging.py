"""Pydantic schemas for packaging, metal detection and storage."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from lotflow.schemas.common import Snapshot

PhotoType = Literal["product", "label", "pallet"]
StorageType = Literal["BOX", "BAG", "SHOP_PACKING"]


# ── Packaging run ────────────────────────────────────────────

class PackagingRunFields(BaseModel):
    """Quality fields of a packaging run (all optional, merged on save)."""
    visual_status: str | None = None
    rework_destination: str | None = None
    pest_status: str | None = None
    foreign_object_status: str | None = None
    mould_status: str | None = None
    damaged_kernels_pct: float | None = Field(None, ge=0, le=100)
    insect_damaged_kernels_pct: float | None = Field(None, ge=0, le=100)
    nitrogen_used: bool | None = None
    nitrogen_batch_number: str | None = None
    primary_packaging_type: str | None = None
    primary_packaging_batch: str | None = None
    secondary_packaging: str | None = None
    secondary_packaging_type: str | None = None
    secondary_packaging_batch: str | None = None
    label_correct: bool | None = None
    label_legible: bool | None = None
    pallet_integrity: bool | None = None
    allergen_swab_result: str | None = None
    remarks: str | None = None


class PackagingRunOut(Snapshot, PackagingRunFields):
    id: str
    step_run_id: str
    created_at: datetime


# ── Weight checks / photos / waste ───────────────────────────

class WeightCheckCreate(BaseModel):
    product_id: str | None = None
    target_weight_kg: float = Field(..., gt=0)
    actual_weight_kg: float = Field(..., ge=0)
    tolerance_kg: float | None = Field(None, ge=0)


class WeightCheckUpdate(BaseModel):
    product_id: str | None = None
    target_weight_kg: float | None = Field(None, gt=0)
    actual_weight_kg: float | None = Field(None, ge=0)
    tolerance_kg: float | None = Field(None, ge=0)


class WeightCheckOut(Snapshot):
    id: str
    packaging_run_id: str
    product_id: str | None = None
    target_weight_kg: float
    actual_weight_kg: float
    tolerance_kg: float | None = None


class PhotoCreate(BaseModel):
    photo_type: PhotoType
    file_path: str = Field(..., max_length=500)


class PhotoOut(Snapshot):
    id: str
    packaging_run_id: str
    photo_type: str
    file_path: str


class PackagingWasteCreate(BaseModel):
    waste_type: str = Field(..., max_length=100)
    quantity_kg: float = Field(..., gt=0)
    remarks: str | None = None


class PackagingWasteOut(Snapshot):
    id: str
    packaging_run_id: str
    waste_type: str
    quantity_kg: float
    remarks: str | None = None


# ── Metal detection ──────────────────────────────────────────

class RejectionCreate(BaseModel):
    object_type: str = Field(..., max_length=100)
    weight_kg: float = Field(..., gt=0)
    corrective_action: str | None = None


class MetalCheckCreate(BaseModel):
    """Payload for POST .../packaging/metal-checks."""
    sorting_output_id: str
    status: Literal["PASS", "FAIL"]
    remarks: str | None = None
    rejections: list[RejectionCreate] = Field(default_factory=list)


class RejectionOut(Snapshot):
    id: str
    attempt_id: str
    object_type: str
    weight_kg: float
    corrective_action: str | None = None


class MetalCheckAttemptOut(Snapshot):
    id: str
    packaging_run_id: str
    sorting_output_id: str
    attempt_no: int
    status: str
    remarks: str | None = None
    checked_by: str | None = None
    checked_by_name: str | None = None
    checked_at: datetime


# ── Pack entries ─────────────────────────────────────────────

class PackEntryCreate(BaseModel):
    sorting_output_id: str
    pack_identifier: str = Field(..., max_length=100)
    quantity_kg: float = Field(..., gt=0)
    packing_type: str = Field(..., max_length=100)
    pack_size_kg: float | None = Field(None, gt=0)


class PackEntryOut(Snapshot):
    id: str
    packaging_run_id: str
    sorting_output_id: str
    pack_identifier: str
    packing_type: str
    pack_size_kg: float | None = None
    quantity_kg: float
    pack_count: int
    remainder_kg: float
    metal_check_status: str
    metal_check_attempts: int
    metal_check_last_id: str
    metal_check_last_checked_at: datetime | None = None
    metal_check_last_checked_by: str | None = None
    created_at: datetime


# ── Storage allocations ──────────────────────────────────────

class StorageAllocationCreate(BaseModel):
    pack_entry_id: str
    storage_type: StorageType
    units_count: int = Field(..., gt=0)
    packs_per_unit: int = Field(..., gt=0)
    box_unit_code: str | None = Field(None, max_length=100)
    notes: str | None = None


class StorageAllocationUpdate(BaseModel):
    storage_type: StorageType | None = None
    units_count: int | None = Field(None, gt=0)
    packs_per_unit: int | None = Field(None, gt=0)
    box_unit_code: str | None = Field(None, max_length=100)
    notes: str | None = None


class StorageAllocationOut(Snapshot):
    id: str
    packaging_run_id: str
    pack_entry_id: str
    storage_type: str
    units_count: int
    packs_per_unit: int
    total_packs: int
    total_quantity_kg: float
    box_unit_code: str | None = None
    notes: str | None = None


class PackEntryCapacity(BaseModel):
    pack_entry_id: str
    pack_count: int
    allocated_packs: int
    remaining_packs: int


# ── Aggregate ────────────────────────────────────────────────

class PackagingSnapshot(Snapshot):
    """Everything hanging off one PACK step run."""
    step_run_id: str
    run: PackagingRunOut | None = None
    weight_checks: tuple[WeightCheckOut, ...] = ()
    photos: tuple[PhotoOut, ...] = ()
    waste: tuple[PackagingWasteOut, ...] = ()
    metal_checks: tuple[MetalCheckAttemptOut, ...] = ()
    rejections: tuple[RejectionOut, ...] = ()
    pack_entries: tuple[PackEntryOut, ...] = ()
    allocations: tuple[StorageAllocationOut, ...] = ()


class MetalCheckStatus(BaseModel):
    """Gate view of one sorting output."""
    sorting_output_id: str
    latest: MetalCheckAttemptOut | None = None
    attempts: list[MetalCheckAttemptOut] = []
    clear_to_pack: bool = False
    failed_rejected_mass_kg: float = 0.0
