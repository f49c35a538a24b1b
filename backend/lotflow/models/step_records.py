"""Step-level records that are not tied to a specific stage aggregate.

StepWaste        — waste recorded at washing, drying and metal-detection
                   steps (sorting and packaging keep their own tables).
NonConformance   — an issue raised against a step run and resolved later.
StepQualityCheck — scored QC evaluation of a step run (one per step run);
                   required before a step flagged ``requires_qc`` completes.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lotflow.database import Base


class StepWaste(Base):
    __tablename__ = "step_waste"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    step_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("step_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # WASH | DRY | METAL
    stage: Mapped[str] = mapped_column(String(30), nullable=False)
    waste_type: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_kg: Mapped[float] = mapped_column(Float, nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class NonConformance(Base):
    __tablename__ = "non_conformances"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    step_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("step_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    nc_type: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # LOW | MEDIUM | HIGH | CRITICAL
    severity: Mapped[str] = mapped_column(String(20), default="LOW")
    corrective_action: Mapped[str | None] = mapped_column(Text)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)
    raised_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class StepQualityCheck(Base):
    __tablename__ = "step_quality_checks"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    step_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("step_runs.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    # PASS | FAIL, derived from the item scores
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    overall_score: Mapped[float | None] = mapped_column(Float)
    evaluated_by: Mapped[str | None] = mapped_column(String(36))
    evaluated_by_name: Mapped[str | None] = mapped_column(String(255))
    evaluated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class StepQualityCheckItem(Base):
    __tablename__ = "step_quality_check_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    quality_check_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("step_quality_checks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    parameter_code: Mapped[str] = mapped_column(String(50), nullable=False)
    # 1-3 graded, 4 = not applicable
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    results: Mapped[str | None] = mapped_column(Text)
    remarks: Mapped[str | None] = mapped_column(Text)
