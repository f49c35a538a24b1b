"""Lightweight helper for recording activity log entries.

Usage:
    async with store.write() as db:
        db.add(entry)
        await log_activity(
            db, operator, action="created", entity_type="pack_entry",
            entity_id=entry.id, entity_code=entry.pack_identifier,
            summary="Packed 500 kg of almonds",
        )

The row is added to the current session and committed with the
enclosing write — no extra flush is performed.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from lotflow.models.activity_log import ActivityLog
from lotflow.utils.identity import Operator


async def log_activity(
    db: AsyncSession,
    operator: Operator,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        operator_id=operator.id,
        operator_name=operator.name,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
