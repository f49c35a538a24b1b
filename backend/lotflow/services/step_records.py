"""Step waste, non-conformances and QC checks recorded against step runs."""

import logging
from datetime import datetime

from sqlalchemy import delete, select

from lotflow.middleware.exceptions import BusinessLogicError, ResourceNotFoundError
from lotflow.models.lot_run import StepRun
from lotflow.models.step_records import (
    NonConformance,
    StepQualityCheck,
    StepQualityCheckItem,
    StepWaste,
)
from lotflow.schemas.lot_run import (
    NonConformanceCreate,
    NonConformanceOut,
    QualityCheckCreate,
    QualityCheckItemOut,
    QualityCheckOut,
    StepWasteCreate,
    StepWasteOut,
)
from lotflow.services import ledger
from lotflow.services.base import Store
from lotflow.utils.activity import log_activity
from lotflow.utils.identity import Operator

logger = logging.getLogger(__name__)

WASTE_STAGES = ("WASH", "DRY", "METAL")
SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")


class StepRecordService:
    def __init__(self, session_factory, operator: Operator | None = None):
        self.store = Store(session_factory)
        self.operator = operator or Operator.system()

    # ── Waste ────────────────────────────────────────────────

    async def list_waste(self, step_run_id: str) -> list[StepWasteOut]:
        rows = await self.store.find(
            StepWaste, StepWaste.step_run_id == step_run_id, order_by=StepWaste.created_at,
        )
        return [StepWasteOut.model_validate(r) for r in rows]

    async def add_waste(self, step_run_id: str, body: StepWasteCreate) -> StepWasteOut:
        await self.store.get_or_404(StepRun, step_run_id, "Step run")
        if body.stage not in WASTE_STAGES:
            raise BusinessLogicError(f"Waste stage must be one of {', '.join(WASTE_STAGES)}")
        if body.quantity_kg <= 0:
            raise BusinessLogicError("Waste quantity must be greater than zero")
        waste = await self.store.insert(StepWaste(step_run_id=step_run_id, **body.model_dump()))
        return StepWasteOut.model_validate(waste)

    async def delete_waste(self, step_run_id: str, waste_id: str) -> None:
        waste = await self.store.get(StepWaste, waste_id)
        if waste is None or waste.step_run_id != step_run_id:
            raise ResourceNotFoundError("Step waste", waste_id)
        await self.store.delete(StepWaste, waste_id)

    # ── Non-conformances ─────────────────────────────────────

    async def list_non_conformances(self, step_run_id: str) -> list[NonConformanceOut]:
        rows = await self.store.find(
            NonConformance,
            NonConformance.step_run_id == step_run_id,
            order_by=NonConformance.created_at,
        )
        return [NonConformanceOut.model_validate(r) for r in rows]

    async def raise_non_conformance(
        self, step_run_id: str, body: NonConformanceCreate,
    ) -> NonConformanceOut:
        await self.store.get_or_404(StepRun, step_run_id, "Step run")
        if body.severity not in SEVERITIES:
            raise BusinessLogicError(f"Severity must be one of {', '.join(SEVERITIES)}")
        nc = NonConformance(step_run_id=step_run_id, raised_by=self.operator.id, **body.model_dump())
        async with self.store.write() as db:
            db.add(nc)
            await db.flush()
            await log_activity(
                db, self.operator, action="created", entity_type="non_conformance",
                entity_id=nc.id, summary=f"{nc.severity} {nc.nc_type}: {nc.description}",
            )
        if nc.severity in ("HIGH", "CRITICAL"):
            logger.warning("%s non-conformance on step run %s: %s", nc.severity, step_run_id, nc.nc_type)
        return NonConformanceOut.model_validate(nc)

    async def resolve_non_conformance(
        self, nc_id: str, corrective_action: str | None = None,
    ) -> NonConformanceOut:
        nc = await self.store.get_or_404(NonConformance, nc_id, "Non-conformance")
        if nc.resolved:
            raise BusinessLogicError("Non-conformance is already resolved")
        values = {"resolved": True, "resolved_at": datetime.utcnow()}
        if corrective_action:
            values["corrective_action"] = corrective_action
        async with self.store.write() as db:
            row = await db.get(NonConformance, nc_id)
            for field, value in values.items():
                setattr(row, field, value)
            await log_activity(
                db, self.operator, action="resolved", entity_type="non_conformance",
                entity_id=nc_id,
            )
        return NonConformanceOut.model_validate(row)

    # ── Quality checks ───────────────────────────────────────

    async def _quality_out(self, check: StepQualityCheck) -> QualityCheckOut:
        items = await self.store.find(
            StepQualityCheckItem,
            StepQualityCheckItem.quality_check_id == check.id,
            order_by=StepQualityCheckItem.parameter_code,
        )
        return QualityCheckOut(
            id=check.id,
            step_run_id=check.step_run_id,
            status=check.status,
            overall_score=check.overall_score,
            evaluated_by=check.evaluated_by,
            evaluated_by_name=check.evaluated_by_name,
            evaluated_at=check.evaluated_at,
            items=[QualityCheckItemOut.model_validate(i) for i in items],
        )

    async def get_quality_check(self, step_run_id: str) -> QualityCheckOut:
        check = await self.store.first(
            select(StepQualityCheck).where(StepQualityCheck.step_run_id == step_run_id)
        )
        if check is None:
            raise ResourceNotFoundError("Quality check for step run", step_run_id)
        return await self._quality_out(check)

    async def save_quality_check(
        self, step_run_id: str, body: QualityCheckCreate,
    ) -> QualityCheckOut:
        """Create or replace the step run's QC evaluation and its scored items."""
        await self.store.get_or_404(StepRun, step_run_id, "Step run")
        codes = [i.parameter_code for i in body.items]
        if len(set(codes)) != len(codes):
            raise BusinessLogicError("Each quality parameter can only be scored once")
        status, overall = ledger.quality_outcome(i.score for i in body.items)

        async with self.store.write() as db:
            check = (await db.execute(
                select(StepQualityCheck).where(StepQualityCheck.step_run_id == step_run_id)
            )).scalar_one_or_none()
            if check is None:
                check = StepQualityCheck(step_run_id=step_run_id, status=status)
                db.add(check)
            await db.flush()
            check.status = status
            check.overall_score = overall
            check.evaluated_by = self.operator.id
            check.evaluated_by_name = self.operator.name
            check.evaluated_at = datetime.utcnow()
            await db.execute(
                delete(StepQualityCheckItem).where(StepQualityCheckItem.quality_check_id == check.id)
            )
            db.add_all([
                StepQualityCheckItem(quality_check_id=check.id, **item.model_dump())
                for item in body.items
            ])
            await log_activity(
                db, self.operator, action="quality_checked", entity_type="step_run",
                entity_id=step_run_id,
                summary=f"Quality check {status}"
                        + (f" (score {overall})" if overall is not None else ""),
            )
        if status == "FAIL":
            logger.warning("Quality check failed on step run %s", step_run_id)
        return await self._quality_out(check)
