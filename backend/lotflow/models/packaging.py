"""Packaging — the aggregate root for a PACK step run.

A PackagingRun (at most one per step run) holds the line's quality
checks.  Around it hang:

  - PackagingWeightCheck  → sampled pack weights
  - PackagingPhoto        → product / label / pallet photo paths
  - PackagingWaste        → waste removed on the packing line
  - PackEntry             → packs made from one sorting output, with a
                            frozen snapshot of the metal check that
                            cleared it
  - StorageAllocation     → packs bundled into BOX / BAG / SHOP_PACKING
                            units (Σ total_packs ≤ entry.pack_count)
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from lotflow.database import Base


class PackagingRun(Base):
    __tablename__ = "packaging_runs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    step_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("step_runs.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )

    # ── Visual / contamination checks ────────────────────────
    # OK | NOT_OK
    visual_status: Mapped[str | None] = mapped_column(String(20))
    rework_destination: Mapped[str | None] = mapped_column(String(100))
    pest_status: Mapped[str | None] = mapped_column(String(20))
    foreign_object_status: Mapped[str | None] = mapped_column(String(20))
    mould_status: Mapped[str | None] = mapped_column(String(20))
    damaged_kernels_pct: Mapped[float | None] = mapped_column(Float)
    insect_damaged_kernels_pct: Mapped[float | None] = mapped_column(Float)

    # ── Nitrogen flushing ────────────────────────────────────
    nitrogen_used: Mapped[bool | None] = mapped_column(Boolean)
    nitrogen_batch_number: Mapped[str | None] = mapped_column(String(100))

    # ── Packaging materials ──────────────────────────────────
    primary_packaging_type: Mapped[str | None] = mapped_column(String(100))
    primary_packaging_batch: Mapped[str | None] = mapped_column(String(100))
    secondary_packaging: Mapped[str | None] = mapped_column(String(100))
    secondary_packaging_type: Mapped[str | None] = mapped_column(String(100))
    secondary_packaging_batch: Mapped[str | None] = mapped_column(String(100))

    # ── Label / pallet / allergen ────────────────────────────
    label_correct: Mapped[bool | None] = mapped_column(Boolean)
    label_legible: Mapped[bool | None] = mapped_column(Boolean)
    pallet_integrity: Mapped[bool | None] = mapped_column(Boolean)
    allergen_swab_result: Mapped[str | None] = mapped_column(String(50))

    remarks: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class PackagingWeightCheck(Base):
    __tablename__ = "packaging_weight_checks"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    packaging_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("packaging_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    product_id: Mapped[str | None] = mapped_column(String(36))
    target_weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    actual_weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    tolerance_kg: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class PackagingPhoto(Base):
    __tablename__ = "packaging_photos"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    packaging_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("packaging_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    # product | label | pallet
    photo_type: Mapped[str] = mapped_column(String(20), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class PackagingWaste(Base):
    __tablename__ = "packaging_waste"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    packaging_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("packaging_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    waste_type: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_kg: Mapped[float] = mapped_column(Float, nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class PackEntry(Base):
    __tablename__ = "pack_entries"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    packaging_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("packaging_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sorting_output_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sorting_outputs.id"), nullable=False, index=True
    )

    # ── Packs ────────────────────────────────────────────────
    pack_identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    packing_type: Mapped[str] = mapped_column(String(100), nullable=False)
    pack_size_kg: Mapped[float | None] = mapped_column(Float)
    quantity_kg: Mapped[float] = mapped_column(Float, nullable=False)
    pack_count: Mapped[int] = mapped_column(Integer, default=0)
    remainder_kg: Mapped[float] = mapped_column(Float, default=0.0)

    # ── Metal check snapshot (frozen at creation) ────────────
    metal_check_status: Mapped[str] = mapped_column(String(10), nullable=False)
    metal_check_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    metal_check_last_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("metal_check_attempts.id"), nullable=False
    )
    metal_check_last_checked_at: Mapped[datetime | None] = mapped_column(DateTime)
    metal_check_last_checked_by: Mapped[str | None] = mapped_column(String(36))

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class StorageAllocation(Base):
    __tablename__ = "storage_allocations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    packaging_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("packaging_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    pack_entry_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pack_entries.id"), nullable=False, index=True
    )

    # BOX | BAG | SHOP_PACKING
    storage_type: Mapped[str] = mapped_column(String(20), nullable=False)
    units_count: Mapped[int] = mapped_column(Integer, nullable=False)
    packs_per_unit: Mapped[int] = mapped_column(Integer, nullable=False)
    total_packs: Mapped[int] = mapped_column(Integer, nullable=False)
    total_quantity_kg: Mapped[float] = mapped_column(Float, nullable=False)
    box_unit_code: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
