"""Ammunition stock arithmetic.

Pure functions behind the ammo ledger. The database-facing operations that
apply them live in ``database.crud`` (``consume_rounds``, ``log_use`` and the
ammo branch of ``update_item_with_detail``).

Rules:
    - A new lot starts full: ``rounds_available = quantity * rounds_per_unit``.
    - Consuming takes ``min(available, requested)`` from one lot only and
      reports the remainder as a shortfall. A shortfall is not an error.
    - Editing quantity or rounds per unit keeps the rounds already used:
      ``new_available = max(0, new_total - (prev_total - prev_available))``.
      When the new total is smaller than what was already used, the result
      clamps to zero and the excess usage is dropped.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of consuming rounds from a single ammo lot."""

    item_id: int
    requested: int
    consumed: int
    shortfall: int
    rounds_available: int
    caliber: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        data = {
            "item_id": self.item_id,
            "caliber": self.caliber,
            "requested": self.requested,
            "consumed": self.consumed,
            "shortfall": self.shortfall,
            "rounds_available": self.rounds_available,
        }
        if self.error:
            data["error"] = self.error
        return data


def total_rounds(quantity: Optional[int], rounds_per_unit: Optional[int]) -> int:
    """Rounds represented by a purchase of ``quantity`` units."""
    return (quantity or 0) * (rounds_per_unit or 1)


def initial_rounds_available(quantity: Optional[int], rounds_per_unit: Optional[int]) -> int:
    """Stock on hand for a freshly created lot."""
    return total_rounds(quantity, rounds_per_unit)


def effective_available(
    rounds_available: Optional[int], quantity: Optional[int], rounds_per_unit: Optional[int]
) -> int:
    """Rounds on hand, falling back to the full total for lots that never tracked usage."""
    if rounds_available is None:
        return total_rounds(quantity, rounds_per_unit)
    return rounds_available


def compute_consumption(available: int, rounds: int) -> tuple[int, int]:
    """Split a request into (consumed, shortfall).

    Raises:
        ValueError: If ``rounds`` is negative.
    """
    if rounds < 0:
        raise ValueError("Rounds to consume must be zero or more")
    take = min(max(available, 0), rounds)
    return take, rounds - take


def recompute_available(prev_total: int, prev_available: int, new_total: int) -> int:
    """Carry rounds already used across a change to the purchased total."""
    consumed_before_edit = max(0, prev_total - prev_available)
    return max(0, new_total - consumed_before_edit)
