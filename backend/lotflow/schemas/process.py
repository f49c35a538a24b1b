"""Pydantic schemas for process definitions."""

from datetime import datetime

from pydantic import BaseModel, Field

from lotflow.schemas.common import Snapshot


class ProcessStepCreate(BaseModel):
    seq: int = Field(..., ge=1)
    step_code: str = Field(..., max_length=30)
    step_name: str = Field(..., max_length=200)
    description: str | None = None
    requires_qc: bool = False
    default_location_id: str | None = None


class ProcessCreate(BaseModel):
    """Payload for POST /api/processes."""
    code: str = Field(..., max_length=50)
    name: str = Field(..., max_length=200)
    description: str | None = None
    steps: list[ProcessStepCreate] = Field(..., min_length=1)


class ProcessStepOut(Snapshot):
    id: str
    process_id: str
    seq: int
    step_code: str
    step_name: str
    description: str | None = None
    requires_qc: bool = False
    default_location_id: str | None = None


class ProcessOut(Snapshot):
    id: str
    code: str
    name: str
    description: str | None = None
    created_at: datetime
    steps: tuple[ProcessStepOut, ...] = ()
