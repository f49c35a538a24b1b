"""Common schemas used across the engine."""

from pydantic import BaseModel


class Snapshot(BaseModel):
    """Read-only view of a stored record.

    Built with ``model_validate(row)`` straight from ORM rows; instances
    are frozen so a service's aggregate can be handed out without being
    edited behind the store's back.
    """
    model_config = {"from_attributes": True, "frozen": True}


class Deleted(BaseModel):
    id: str
    deleted: bool = True
