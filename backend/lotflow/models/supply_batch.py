"""SupplyBatch — a received lot of raw material, owned by inventory.

The execution engine never edits quantities here.  It only flips
`process_status` (UNPROCESSED → PROCESSING → PROCESSED) through the
inventory gateway, and inserts new batches when material is reworked.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from lotflow.database import Base


class SupplyBatch(Base):
    __tablename__ = "supply_batches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    lot_no: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="kg")

    # ── Quantities (kg) ──────────────────────────────────────
    received_qty: Mapped[float] = mapped_column(Float, default=0.0)
    current_qty: Mapped[float] = mapped_column(Float, default=0.0)

    # UNPROCESSED | PROCESSING | PROCESSED
    process_status: Mapped[str] = mapped_column(String(30), default="UNPROCESSED", index=True)
    # PENDING | PASSED | FAILED
    quality_status: Mapped[str] = mapped_column(String(30), default="PENDING")

    expiry_date: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
