"""Operator identity supplied by the surrounding application.

Authentication happens upstream; the engine only needs to know who is
acting so it can stamp step runs, inspections and the activity log.
The caller passes the operator in two request headers:

    X-Operator-Id:   <id>
    X-Operator-Name: <display name>

Requests without them are attributed to the ``system`` operator.
"""

from fastapi import Header
from pydantic import BaseModel


class Operator(BaseModel):
    model_config = {"frozen": True}

    id: str
    name: str

    @classmethod
    def system(cls) -> "Operator":
        return cls(id="system", name="System")


async def get_operator(
    x_operator_id: str | None = Header(None),
    x_operator_name: str | None = Header(None),
) -> Operator:
    """FastAPI dependency: resolve the acting operator from headers."""
    if not x_operator_id:
        return Operator.system()
    return Operator(id=x_operator_id, name=x_operator_name or x_operator_id)
