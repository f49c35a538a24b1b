"""LotRun — one execution of a process definition against one supply batch.

A LotRun owns one StepRun per process step.  The run is COMPLETED only
when every StepRun is COMPLETED; completion also produces a
ProductionBatch and flips the supply batch to PROCESSED.

Rework runs carry `is_rework` and a back-reference to the run whose
rejected material they reprocess (see ReworkedLot).

Lifecycle:  IN_PROGRESS → COMPLETED   (never deleted)
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from lotflow.database import Base


class LotRun(Base):
    __tablename__ = "lot_runs"
    __table_args__ = (
        UniqueConstraint("supply_batch_id", "process_id", name="uq_lot_runs_batch_process"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Traceability links ───────────────────────────────────
    supply_batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("supply_batches.id"), nullable=False, index=True
    )
    process_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("process_definitions.id"), nullable=False, index=True
    )

    # ── Status ───────────────────────────────────────────────
    # PENDING | IN_PROGRESS | COMPLETED
    status: Mapped[str] = mapped_column(String(30), default="PENDING", index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Rework lineage ───────────────────────────────────────
    is_rework: Mapped[bool] = mapped_column(Boolean, default=False)
    original_process_lot_run_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("lot_runs.id"), index=True
    )

    started_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class StepRun(Base):
    __tablename__ = "step_runs"
    __table_args__ = (
        UniqueConstraint("lot_run_id", "process_step_id", name="uq_step_runs_run_step"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    lot_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lot_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    process_step_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("process_steps.id"), nullable=False
    )

    # PENDING | IN_PROGRESS | COMPLETED
    status: Mapped[str] = mapped_column(String(30), default="PENDING", index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)

    performed_by: Mapped[str | None] = mapped_column(String(36))  # operator id
    performed_by_name: Mapped[str | None] = mapped_column(String(200))
    location_id: Mapped[str | None] = mapped_column(String(36))
    quantity_out_kg: Mapped[float | None] = mapped_column(Float)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class ProductionBatch(Base):
    """Finished-goods batch created when a LotRun completes."""
    __tablename__ = "production_batches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    batch_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    lot_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lot_runs.id"), nullable=False, unique=True
    )
    supply_batch_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("supply_batches.id")
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, default=0.0)
    unit: Mapped[str] = mapped_column(String(20), default="kg")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ReworkedLot(Base):
    """Link between a sorting step's rejected material and its rework batch."""
    __tablename__ = "reworked_lots"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    original_supply_batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("supply_batches.id"), nullable=False, index=True
    )
    rework_supply_batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("supply_batches.id"), nullable=False, index=True
    )
    step_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("step_runs.id"), nullable=False, index=True
    )
    quantity_kg: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
