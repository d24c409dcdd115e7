# interest.py
"""
Weekly compounding interest on open debts.

- 5% per whole week, rounded UP to the next integer after every week.
- Weeks are applied one at a time so the per-week rounding compounds exactly.
- The accrual clock advances by whole weeks only; a partial week carries over
  to the next run, so running this at irregular intervals neither loses nor
  double-charges time.
"""

from __future__ import annotations
import datetime
import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional
import logging

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.interest")

WEEKLY_GROWTH = Fraction(105, 100)
DAYS_PER_WEEK = 7
_DAY = datetime.timedelta(days=1)


@dataclass(frozen=True, slots=True)
class Accrual:
    """Result of bringing one balance current."""
    remaining: int
    last_accrual_at: datetime.datetime
    weeks: int

    @property
    def changed(self) -> bool:
        return self.weeks > 0


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def elapsed_days(since: datetime.datetime, now: datetime.datetime) -> int:
    """Whole days between `since` and `now`; never negative."""
    if now <= since:
        return 0
    return (now - since) // _DAY


def grow(remaining: int, weeks: int) -> int:
    """Apply `weeks` rounds of ceil(remaining * 1.05)."""
    amount = int(remaining)
    for _ in range(max(0, weeks)):
        amount = math.ceil(amount * WEEKLY_GROWTH)
    return amount


def accrue(remaining: int, last_accrual_at: datetime.datetime, now: Optional[datetime.datetime] = None) -> Accrual:
    """
    Bring a balance current as of `now`.

    Returns the untouched inputs when less than one whole week has elapsed
    (including clocks that went backwards).
    """
    now = now or utcnow()
    weeks = elapsed_days(last_accrual_at, now) // DAYS_PER_WEEK
    if weeks <= 0:
        return Accrual(remaining=int(remaining), last_accrual_at=last_accrual_at, weeks=0)

    new_remaining = grow(remaining, weeks)
    new_last = last_accrual_at + datetime.timedelta(days=weeks * DAYS_PER_WEEK)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            f"accrue weeks={weeks} remaining={remaining}->{new_remaining} "
            f"last_accrual_at={last_accrual_at.isoformat()}->{new_last.isoformat()}"
        )
    return Accrual(remaining=new_remaining, last_accrual_at=new_last, weeks=weeks)


def days_until_next_accrual(last_accrual_at: datetime.datetime, now: Optional[datetime.datetime] = None) -> int:
    """7 - (elapsed days mod 7), clamped to [0, 7]."""
    now = now or utcnow()
    days = DAYS_PER_WEEK - (elapsed_days(last_accrual_at, now) % DAYS_PER_WEEK)
    return min(DAYS_PER_WEEK, max(0, days))
