# ledger.py
"""
Ledger operations that always start by bringing interest current.

Each public coroutine runs in a single store transaction: the accrual pass and
the write that follows it commit together or not at all.
"""

from __future__ import annotations
import datetime
from dataclasses import dataclass
from typing import List, Optional
import logging

from debts import BorrowerTotal, Debt, DebtSession, DebtStore
from interest import accrue, days_until_next_accrual, utcnow
from repayment import Allocation, allocate

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.ledger")


@dataclass(frozen=True, slots=True)
class StatusLine:
    debt: Debt
    days_until_interest: int


@dataclass(frozen=True, slots=True)
class StatusReport:
    lines: List[StatusLine]
    totals: List[BorrowerTotal]

    @property
    def empty(self) -> bool:
        return not self.lines


async def accrue_open(session: DebtSession, now: datetime.datetime) -> int:
    """Apply whole elapsed weeks of interest to every open debt. Returns rows changed."""
    updated = 0
    for debt in await session.open_debts():
        result = accrue(debt.remaining, debt.last_accrual_at, now)
        if not result.changed:
            continue
        if await session.set_accrual(debt.id, result.remaining, result.last_accrual_at):
            updated += 1
            logger.info(
                f"accrue:debt id={debt.id} weeks={result.weeks} "
                f"remaining={debt.remaining}->{result.remaining}"
            )
    return updated


class Ledger:
    def __init__(self, store: DebtStore):
        self.store = store

    async def accrue(self, now: Optional[datetime.datetime] = None) -> int:
        now = now or utcnow()
        async with self.store.transaction() as session:
            updated = await accrue_open(session, now)
        if updated:
            logger.info(f"accrue:ok updated={updated}")
        return updated

    async def record_loan(
        self,
        borrower_id: int,
        lender_id: int,
        amount: int,
        note: str = "",
        now: Optional[datetime.datetime] = None,
    ) -> Debt:
        if amount <= 0:
            raise ValueError("Loan amount must be positive.")
        now = now or utcnow()
        async with self.store.transaction() as session:
            await accrue_open(session, now)
            return await session.create(borrower_id, lender_id, amount, note=note, now=now)

    async def repay(
        self,
        borrower_id: int,
        amount: int,
        now: Optional[datetime.datetime] = None,
    ) -> List[Allocation]:
        """Accrue, then pay the borrower's debts oldest-first. Excess is discarded."""
        if amount <= 0:
            raise ValueError("Repayment amount must be positive.")
        now = now or utcnow()
        async with self.store.transaction() as session:
            await accrue_open(session, now)
            allocations = allocate(await session.open_debts_for(borrower_id), amount)
            for a in allocations:
                await session.set_remaining(a.debt_id, a.remaining)
        logger.info(
            f"repay:ok borrower_id={borrower_id} amount={amount} "
            f"applied={sum(a.applied for a in allocations)} touched={len(allocations)}"
        )
        return allocations

    async def status(self, now: Optional[datetime.datetime] = None) -> StatusReport:
        now = now or utcnow()
        async with self.store.transaction() as session:
            await accrue_open(session, now)
            debts = await session.open_debts()
            totals = await session.open_totals()
        lines = [StatusLine(d, days_until_next_accrual(d.last_accrual_at, now)) for d in debts]
        return StatusReport(lines=lines, totals=totals)

    async def delete(self, debt_id: int) -> bool:
        async with self.store.transaction() as session:
            return await session.delete(debt_id)

    async def outstanding(self, borrower_id: int, now: Optional[datetime.datetime] = None) -> int:
        now = now or utcnow()
        async with self.store.transaction() as session:
            await accrue_open(session, now)
            return await session.total_open_for(borrower_id)
