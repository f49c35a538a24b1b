"""Shared number generation utility.

Format tokens:
  {date}       → YYYYMMDD
  {seq:N}      → zero-padded sequence number, N digits, per prefix
  {lot}        → source lot number (rework lots only)

Default formats (overridable through settings):
  production: PROD-{date}-{seq:3}
  rework:     REWORK-{lot}-{seq:3}
"""

import re
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lotflow.config import settings
from lotflow.models.lot_run import ProductionBatch
from lotflow.models.supply_batch import SupplyBatch


def _formats() -> dict[str, str]:
    return {
        "production": settings.production_batch_format,
        "rework": settings.rework_lot_format,
    }


# Map entity types to their model and code column for counting
ENTITY_COLUMN_MAP = {
    "production": (ProductionBatch, "batch_code"),
    "rework": (SupplyBatch, "lot_no"),
}


def _fill(fmt: str, today_str: str, lot_no: str | None) -> str:
    code = fmt.replace("{date}", today_str)
    if lot_no is not None:
        code = code.replace("{lot}", lot_no)
    return code


def build_prefix(fmt: str, today_str: str, lot_no: str | None = None) -> str:
    """Return the static part of a code (everything before {seq:N})."""
    return re.sub(r"\{seq:\d+\}.*$", "", _fill(fmt, today_str, lot_no))


def format_code(fmt: str, today_str: str, seq_num: int, lot_no: str | None = None) -> str:
    seq_match = re.search(r"\{seq:(\d+)\}", fmt)
    seq_width = int(seq_match.group(1)) if seq_match else 3
    return re.sub(r"\{seq:\d+\}", f"{seq_num:0{seq_width}d}", _fill(fmt, today_str, lot_no))


async def _count_existing(db: AsyncSession, entity: str, prefix: str) -> int:
    model, column_name = ENTITY_COLUMN_MAP[entity]
    column = getattr(model, column_name)
    result = await db.execute(
        select(func.count(model.id)).where(column.like(f"{prefix}%"))
    )
    return result.scalar() or 0


async def generate_code(
    db: AsyncSession,
    entity: str,
    lot_no: str | None = None,
) -> str:
    """Generate the next sequential code for an entity.

    Args:
        db: Database session
        entity: "production" or "rework"
        lot_no: Source lot number (required for rework lots)

    Returns:
        Generated code string, e.g. "PROD-20260219-001"
    """
    fmt = _formats()[entity]
    today_str = date.today().strftime("%Y%m%d")
    prefix = build_prefix(fmt, today_str, lot_no)
    count = await _count_existing(db, entity, prefix)
    return format_code(fmt, today_str, count + 1, lot_no)
