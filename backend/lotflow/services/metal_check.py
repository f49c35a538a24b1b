"""Metal-check gate — per-output attempt history for a packaging run.

    record_attempt   next attempt number, attempt row, then rejections
    latest           governing attempt (highest number) or None
    failed_rejected_mass
                     rejected kg over every FAIL attempt of an output

Attempts are never edited or removed; a re-run adds the next number.
"""

import logging
from datetime import datetime
from functools import partial

from sqlalchemy.exc import IntegrityError

from lotflow.middleware.exceptions import BusinessLogicError
from lotflow.models.metal_check import MetalCheckAttempt, MetalCheckRejection
from lotflow.schemas.packaging import MetalCheckAttemptOut, MetalCheckCreate
from lotflow.services import ledger
from lotflow.services.packaging import PackagingService
from lotflow.services.saga import Saga
from lotflow.utils.activity import log_activity

logger = logging.getLogger(__name__)


class MetalCheckGate:
    def __init__(self, packaging: PackagingService):
        self.packaging = packaging
        self.store = packaging.store

    def history(self, output_id: str) -> list[MetalCheckAttemptOut]:
        return ledger.attempts_for(self.packaging.snapshot.metal_checks, output_id)

    def latest(self, output_id: str) -> MetalCheckAttemptOut | None:
        return ledger.latest_attempt(self.packaging.snapshot.metal_checks, output_id)

    def is_clear_to_pack(self, output_id: str) -> bool:
        return ledger.is_clear_to_pack(self.packaging.snapshot.metal_checks, output_id)

    def failed_rejected_mass(self, output_id: str) -> float:
        snapshot = self.packaging.snapshot
        return ledger.failed_rejected_mass(snapshot.metal_checks, snapshot.rejections, output_id)

    async def record_attempt(self, body: MetalCheckCreate) -> MetalCheckAttemptOut:
        if body.status not in ("PASS", "FAIL"):
            raise BusinessLogicError("Metal check status must be PASS or FAIL")
        if body.status == "FAIL" and not body.rejections:
            raise BusinessLogicError("At least one rejection is required for a FAIL metal check")
        output = await self.packaging.sorting_output(body.sorting_output_id)

        run_id = await self.packaging.ensure_packaging_run()
        await self.packaging.refresh()
        attempt_no = ledger.next_attempt_no(self.packaging.snapshot.metal_checks, output.id)

        async with Saga("record_metal_check") as saga:
            attempt = MetalCheckAttempt(
                packaging_run_id=run_id,
                sorting_output_id=output.id,
                attempt_no=attempt_no,
                status=body.status,
                remarks=body.remarks,
                checked_by=self.packaging.operator.id,
                checked_by_name=self.packaging.operator.name,
                checked_at=datetime.utcnow(),
            )
            try:
                async with self.store.write() as db:
                    db.add(attempt)
                    await db.flush()
                    await log_activity(
                        db, self.packaging.operator, action="metal_checked",
                        entity_type="sorting_output", entity_id=output.id,
                        summary=f"Metal check attempt {attempt_no}: {body.status}",
                        details={"attempt_id": attempt.id, "rejections": len(body.rejections)},
                    )
            except IntegrityError:
                logger.warning(
                    "Metal check attempt %d for output %s was taken concurrently",
                    attempt_no, output.id,
                )
                raise
            saga.on_undo("delete metal check attempt", partial(self.store.delete, MetalCheckAttempt, attempt.id))

            if body.status == "FAIL":
                await self.store.insert_all([
                    MetalCheckRejection(attempt_id=attempt.id, **r.model_dump())
                    for r in body.rejections
                ])

        await self.packaging.refresh()
        return MetalCheckAttemptOut.model_validate(attempt)
