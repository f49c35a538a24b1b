"""Process definitions — the ordered step templates a Lot Run follows.

A ProcessDefinition (e.g. "Dried fruit line") owns an ordered list of
ProcessSteps.  When a Lot Run is started, one StepRun is created for
every ProcessStep, in `seq` order.

Step codes used by the engine:
    WASH | DRY | SORT | METAL | PACK
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lotflow.database import Base


class ProcessDefinition(Base):
    __tablename__ = "process_definitions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    steps = relationship(
        "ProcessStep", back_populates="process",
        order_by="ProcessStep.seq",
    )


class ProcessStep(Base):
    __tablename__ = "process_steps"
    __table_args__ = (
        UniqueConstraint("process_id", "seq", name="uq_process_steps_process_seq"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    process_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("process_definitions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    # WASH | DRY | SORT | METAL | PACK (free text for custom steps)
    step_code: Mapped[str] = mapped_column(String(30), nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    requires_qc: Mapped[bool] = mapped_column(Boolean, default=False)
    default_location_id: Mapped[str | None] = mapped_column(String(36))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    process = relationship("ProcessDefinition", back_populates="steps")
