"""Quantity ledger primitives.

Pure functions over stored records (ORM rows or their snapshots).  They
never touch the store and never cache; every total is recomputed from
the rows it is given.
"""

import math
from typing import Iterable, Protocol, Sequence


class _Attempt(Protocol):
    id: str
    sorting_output_id: str
    attempt_no: int
    status: str


class _Rejection(Protocol):
    attempt_id: str
    weight_kg: float


class _Allocation(Protocol):
    id: str
    total_packs: int


class _Quantity(Protocol):
    quantity_kg: float


# ── Metal check ──────────────────────────────────────────────

def attempts_for(attempts: Iterable[_Attempt], output_id: str) -> list[_Attempt]:
    """Attempts for one sorting output, oldest first."""
    return sorted(
        (a for a in attempts if a.sorting_output_id == output_id),
        key=lambda a: a.attempt_no,
    )


def latest_attempt(attempts: Iterable[_Attempt], output_id: str) -> _Attempt | None:
    """The governing attempt: highest attempt number, or None."""
    history = attempts_for(attempts, output_id)
    return history[-1] if history else None


def next_attempt_no(attempts: Iterable[_Attempt], output_id: str) -> int:
    history = attempts_for(attempts, output_id)
    return (history[-1].attempt_no if history else 0) + 1


def is_clear_to_pack(attempts: Iterable[_Attempt], output_id: str) -> bool:
    latest = latest_attempt(attempts, output_id)
    return latest is not None and latest.status == "PASS"


def failed_rejected_mass(
    attempts: Iterable[_Attempt],
    rejections: Iterable[_Rejection],
    output_id: str,
) -> float:
    """Rejected mass summed over every FAIL attempt of an output."""
    failed_ids = {
        a.id for a in attempts
        if a.sorting_output_id == output_id and a.status == "FAIL"
    }
    return round(sum(r.weight_kg for r in rejections if r.attempt_id in failed_ids), 3)


# ── Packs ────────────────────────────────────────────────────

def pack_breakdown(quantity_kg: float, pack_size_kg: float | None) -> tuple[int, float]:
    """Whole packs and leftover kg for a packed quantity.

    With no usable pack size nothing is counted as packs and the whole
    quantity is the remainder.
    """
    if not pack_size_kg or pack_size_kg <= 0:
        return 0, round(quantity_kg, 3)
    # round first so 0.3 / 0.1 counts as 3 packs, not 2
    pack_count = math.floor(round(quantity_kg / pack_size_kg, 6))
    remainder = round(quantity_kg - pack_count * pack_size_kg, 3)
    return pack_count, max(0.0, remainder)


def allocated_packs(
    allocations: Iterable[_Allocation],
    exclude_id: str | None = None,
) -> int:
    return sum(a.total_packs for a in allocations if a.id != exclude_id)


def remaining_packs(
    pack_count: int,
    allocations: Iterable[_Allocation],
    exclude_id: str | None = None,
) -> int:
    """Packs of one entry not yet placed in storage units.

    ``allocations`` must already be limited to that entry; pass
    ``exclude_id`` when re-checking an allocation being edited.
    """
    return max(0, pack_count - allocated_packs(allocations, exclude_id))


def wip_remaining_kg(output_quantity_kg: float, pack_entries: Sequence[_Quantity]) -> float:
    """Sorted mass of an output not yet turned into pack entries."""
    return round(max(0.0, output_quantity_kg - sum(e.quantity_kg for e in pack_entries)), 3)


# ── Lot quantity ─────────────────────────────────────────────

def total_kg(records: Iterable[_Quantity]) -> float:
    return round(sum(r.quantity_kg for r in records), 3)


def available_kg(
    initial_kg: float,
    washing: float,
    drying: float,
    metal: float,
    packaging: float,
) -> float:
    """Lot mass left after deductible waste.

    Sorting waste is reported alongside but is not deducted here; it is
    reconciled against the sorted outputs instead.
    """
    return round(max(0.0, initial_kg - (washing + drying + metal + packaging)), 3)


def reworkable_kg(
    initial_kg: float,
    pre_sort_waste_kg: float,
    sorted_kg: float,
    reworked_kg: float,
) -> float:
    """Mass still available to send to rework from a sorting step."""
    return round(max(0.0, initial_kg - pre_sort_waste_kg - sorted_kg - reworked_kg), 3)


# ── Step quality checks ──────────────────────────────────────

QC_NOT_APPLICABLE = 4
QC_PASS_SCORE = 3


def quality_outcome(scores: Iterable[int]) -> tuple[str, float | None]:
    """PASS/FAIL and mean score over graded parameters (N/A ignored)."""
    graded = [s for s in scores if 0 < s != QC_NOT_APPLICABLE]
    if not graded:
        return "PASS", None
    status = "FAIL" if any(s < QC_PASS_SCORE for s in graded) else "PASS"
    return status, round(sum(graded) / len(graded), 2)
