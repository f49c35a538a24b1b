"""Metal detection — per-output attempt history gating packaging.

Every SortingOutput packed in a packaging run is passed through the
metal detector.  Each pass is a MetalCheckAttempt numbered from 1
upward per (packaging run, output).  The attempt with the highest
number governs: packing is allowed only while it is PASS.

A FAIL attempt always carries one or more MetalCheckRejection rows
describing what was found and the corrective action taken.  History
is never rewritten; a re-run simply adds the next attempt.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from lotflow.database import Base


class MetalCheckAttempt(Base):
    __tablename__ = "metal_check_attempts"
    __table_args__ = (
        UniqueConstraint(
            "packaging_run_id", "sorting_output_id", "attempt_no",
            name="uq_metal_check_attempts_output_no",
        ),
    )

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
    attempt_no: Mapped[int] = mapped_column(Integer, nullable=False)

    # PASS | FAIL
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)

    checked_by: Mapped[str | None] = mapped_column(String(36))
    checked_by_name: Mapped[str | None] = mapped_column(String(200))
    checked_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class MetalCheckRejection(Base):
    __tablename__ = "metal_check_rejections"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    attempt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("metal_check_attempts.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    # e.g. ferrous | non-ferrous | stainless | glass | stone
    object_type: Mapped[str] = mapped_column(String(100), nullable=False)
    weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    corrective_action: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
