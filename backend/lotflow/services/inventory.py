"""Gateway to the inventory collaborator's supply batches.

The engine is only allowed two kinds of change here: flipping a batch's
``process_status`` and inserting a new batch for reworked material.
Status setters return the previous status so callers can register an
undo that puts it back.
"""

import logging

from lotflow.models.supply_batch import SupplyBatch
from lotflow.services.base import Store

logger = logging.getLogger(__name__)

PROCESS_STATUSES = ("UNPROCESSED", "PROCESSING", "PROCESSED")


class InventoryGateway:
    def __init__(self, store: Store):
        self.store = store

    async def set_status(self, supply_batch_id: str, status: str) -> str:
        if status not in PROCESS_STATUSES:
            raise ValueError(f"Unknown process status: {status}")
        batch = await self.store.get_or_404(SupplyBatch, supply_batch_id, "Supply batch")
        previous = batch.process_status
        if previous != status:
            await self.store.update(SupplyBatch, supply_batch_id, {"process_status": status})
            logger.info("Supply batch %s: %s → %s", batch.lot_no, previous, status)
        return previous

    async def mark_processing(self, supply_batch_id: str) -> str:
        return await self.set_status(supply_batch_id, "PROCESSING")

    async def mark_processed(self, supply_batch_id: str) -> str:
        return await self.set_status(supply_batch_id, "PROCESSED")
