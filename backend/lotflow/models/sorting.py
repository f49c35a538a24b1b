"""Sorting stage — typed WIP outputs split off a washed/dried lot.

A SORT step run produces one or more SortingOutputs (kg of a product,
with a moisture reading).  Each output may carry SortingWaste rows.

Sorted quantity plus waste is reconciled against the input mass by the
operator; no conservation rule is enforced on these tables.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lotflow.database import Base


class SortingOutput(Base):
    __tablename__ = "sorting_outputs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    step_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("step_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    quantity_kg: Mapped[float] = mapped_column(Float, nullable=False)
    moisture_percent: Mapped[float | None] = mapped_column(Float)
    remarks: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class SortingWaste(Base):
    __tablename__ = "sorting_waste"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    sorting_output_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sorting_outputs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    waste_type: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_kg: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
