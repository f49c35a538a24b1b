"""Process definitions — ordered step templates for lot runs.

Creating a definition writes the process row, then its steps.  If the
step write fails the process row is deleted again.
"""

import logging
from functools import partial

from sqlalchemy import select

from lotflow.middleware.exceptions import BusinessLogicError
from lotflow.models.process import ProcessDefinition, ProcessStep
from lotflow.schemas.process import ProcessCreate, ProcessOut, ProcessStepOut
from lotflow.services.base import Store
from lotflow.services.saga import Saga
from lotflow.utils.activity import log_activity
from lotflow.utils.identity import Operator

logger = logging.getLogger(__name__)


class ProcessService:
    def __init__(self, session_factory, operator: Operator | None = None):
        self.store = Store(session_factory)
        self.operator = operator or Operator.system()

    async def _out(self, process: ProcessDefinition) -> ProcessOut:
        steps = await self.store.find(
            ProcessStep, ProcessStep.process_id == process.id, order_by=ProcessStep.seq,
        )
        return ProcessOut(
            id=process.id,
            code=process.code,
            name=process.name,
            description=process.description,
            created_at=process.created_at,
            steps=tuple(ProcessStepOut.model_validate(s) for s in steps),
        )

    async def create_process(self, body: ProcessCreate) -> ProcessOut:
        if not body.steps:
            raise BusinessLogicError("A process needs at least one step")
        seqs = [s.seq for s in body.steps]
        if len(set(seqs)) != len(seqs):
            raise BusinessLogicError("Step sequence numbers must be unique within a process")
        existing = await self.store.first(
            select(ProcessDefinition).where(ProcessDefinition.code == body.code)
        )
        if existing is not None:
            raise BusinessLogicError(f"Process code {body.code} already exists")

        async with Saga("create_process") as saga:
            process = ProcessDefinition(
                code=body.code, name=body.name, description=body.description,
            )
            async with self.store.write() as db:
                db.add(process)
                await db.flush()
                await log_activity(
                    db, self.operator, action="created", entity_type="process",
                    entity_id=process.id, entity_code=process.code,
                    summary=f"Created process {process.name} with {len(body.steps)} step(s)",
                )
            saga.on_undo("delete process", partial(self.store.delete, ProcessDefinition, process.id))

            await self.store.insert_all([
                ProcessStep(process_id=process.id, **step.model_dump())
                for step in sorted(body.steps, key=lambda s: s.seq)
            ])

        return await self._out(process)

    async def get_process(self, process_id: str) -> ProcessOut:
        process = await self.store.get_or_404(ProcessDefinition, process_id, "Process")
        return await self._out(process)

    async def list_processes(self) -> list[ProcessOut]:
        processes = await self.store.all(
            select(ProcessDefinition).order_by(ProcessDefinition.code)
        )
        return [await self._out(p) for p in processes]
