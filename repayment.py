# repayment.py
"""
FIFO allocation of a payment across a borrower's open debts.

The oldest debt (by created_at, then id) is paid first. Whatever is left over
once every open debt is cleared is dropped: overpayment is not credited or
carried forward.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Protocol
import datetime
import logging

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.repayment")


class OpenDebt(Protocol):
    id: int
    remaining: int
    created_at: datetime.datetime


@dataclass(frozen=True, slots=True)
class Allocation:
    """What one payment did to one debt."""
    debt_id: int
    applied: int
    remaining: int

    @property
    def paid(self) -> bool:
        return self.remaining == 0


def allocate(debts: Iterable[OpenDebt], amount: int) -> List[Allocation]:
    """
    Walk open debts oldest-first, applying `amount` until it runs out.

    Returns one Allocation per debt touched, in the order they were touched;
    an empty list when there is nothing open (or nothing to pay).
    """
    unallocated = int(amount)
    out: List[Allocation] = []
    ordered = sorted(debts, key=lambda d: (d.created_at, d.id))
    for debt in ordered:
        if unallocated <= 0:
            break
        owed = int(debt.remaining)
        if owed <= 0:
            continue
        if unallocated >= owed:
            out.append(Allocation(debt_id=debt.id, applied=owed, remaining=0))
            unallocated -= owed
        else:
            out.append(Allocation(debt_id=debt.id, applied=unallocated, remaining=owed - unallocated))
            unallocated = 0

    if unallocated > 0 and out:
        logger.info(f"allocate:overpayment_discarded amount={amount} excess={unallocated}")
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"allocate amount={amount} debts={len(ordered)} touched={len(out)}")
    return out
