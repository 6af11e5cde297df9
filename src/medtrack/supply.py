"""Supply ledger: remaining dose counts per medication."""

from __future__ import annotations

from datetime import datetime

from .models import Medication


def decrement_supply(medication: Medication) -> Medication | None:
    """Copy of ``medication`` with one dose fewer, or None if already empty."""
    if medication.current_supply <= 0:
        return None
    return medication.model_copy(update={"current_supply": medication.current_supply - 1})


def refill_supply(
    medication: Medication,
    now: datetime,
    amount: int | None = None,
) -> Medication:
    """Restock to ``total_supply``, or add ``amount`` doses when given."""
    if amount is None:
        current = medication.total_supply
    else:
        if amount <= 0:
            raise ValueError("refill amount must be positive")
        current = medication.current_supply + amount
    return medication.model_copy(
        update={"current_supply": current, "last_refill_date": now}
    )


def needs_refill(medication: Medication) -> bool:
    return medication.current_supply <= medication.refill_at
