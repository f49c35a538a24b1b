"""Lot-execution models (single schema).

Importing this package registers every table on ``Base.metadata`` so
Alembic and ``create_all`` see the full set.
"""

# ── Definitions / inventory ──────────────────────────────────
from lotflow.models.process import ProcessDefinition, ProcessStep
from lotflow.models.supply_batch import SupplyBatch

# ── Execution ────────────────────────────────────────────────
from lotflow.models.lot_run import LotRun, StepRun, ProductionBatch, ReworkedLot
from lotflow.models.step_records import (
    StepWaste, NonConformance, StepQualityCheck, StepQualityCheckItem,
)

# ── Stages ───────────────────────────────────────────────────
from lotflow.models.sorting import SortingOutput, SortingWaste
from lotflow.models.packaging import (
    PackagingRun, PackagingWeightCheck, PackagingPhoto, PackagingWaste,
    PackEntry, StorageAllocation,
)
from lotflow.models.metal_check import MetalCheckAttempt, MetalCheckRejection

# ── Audit ────────────────────────────────────────────────────
from lotflow.models.activity_log import ActivityLog

__all__ = [
    "ProcessDefinition", "ProcessStep", "SupplyBatch",
    "LotRun", "StepRun", "ProductionBatch", "ReworkedLot",
    "StepWaste", "NonConformance", "StepQualityCheck", "StepQualityCheckItem",
    "SortingOutput", "SortingWaste",
    "PackagingRun", "PackagingWeightCheck", "PackagingPhoto", "PackagingWaste",
    "PackEntry", "StorageAllocation",
    "MetalCheckAttempt", "MetalCheckRejection",
    "ActivityLog",
]
