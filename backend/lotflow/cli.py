"""Management CLI.

Usage:
    python -m lotflow.cli migrate        # Alembic upgrade head
    python -m lotflow.cli open-runs      # Lot runs still IN_PROGRESS
"""

import subprocess
import sys

from sqlalchemy import create_engine, select

from lotflow.config import settings
from lotflow.models.lot_run import LotRun
from lotflow.models.supply_batch import SupplyBatch


def migrate():
    """Run Alembic upgrade head against the configured database."""
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True, text=True,
    )
    if result.returncode != 0:
        print(f"  FAILED: {result.stderr}")
        sys.exit(result.returncode)
    print("  OK")


def open_runs():
    engine = create_engine(settings.database_url_sync)
    with engine.connect() as conn:
        rows = conn.execute(
            select(SupplyBatch.lot_no, LotRun.id, LotRun.started_at, LotRun.is_rework)
            .join(SupplyBatch, SupplyBatch.id == LotRun.supply_batch_id)
            .where(LotRun.status == "IN_PROGRESS")
            .order_by(LotRun.started_at)
        ).all()
    for lot_no, run_id, started_at, is_rework in rows:
        flag = " (rework)" if is_rework else ""
        started = started_at.strftime("%Y-%m-%d %H:%M") if started_at else "-"
        print(f"  {lot_no}  {run_id}  started {started}{flag}")
    print(f"\n{len(rows)} open run(s)")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "migrate":
        migrate()
    elif cmd == "open-runs":
        open_runs()
    else:
        print(__doc__)
        sys.exit(1)
