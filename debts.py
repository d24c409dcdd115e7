# debts.py
"""
SQLite-backed debt store for the ledger bot.

Key features
------------
- One `debts` table; every row is one loan, never merged
- All work happens inside `DebtStore.transaction()`, which serialises access
  to the shared connection and commits or rolls back as a unit
- Debts move open -> paid once and never reopen
- Aggregate helpers for the status report (per-borrower totals)

Storage format
--------------
debts(id, borrower_id, lender_id, amount_initial, amount_remaining,
      created_at, last_accrual_at, status, note)

Timestamps are ISO-8601 UTC strings, so ordering by created_at is
chronological.
"""

from __future__ import annotations
import asyncio
import contextlib
import datetime
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional
import logging

import aiosqlite

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.debts")

OPEN = "open"
PAID = "paid"

SCHEMA = """
CREATE TABLE IF NOT EXISTS debts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    borrower_id INTEGER NOT NULL,
    lender_id INTEGER NOT NULL,
    amount_initial INTEGER NOT NULL CHECK (amount_initial > 0),
    amount_remaining INTEGER NOT NULL CHECK (amount_remaining >= 0),
    created_at TEXT NOT NULL,
    last_accrual_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'paid')),
    note TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_debts_borrower_status ON debts (borrower_id, status);
"""


def _ts(dt: datetime.datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc).isoformat()


def _parse_ts(raw: str) -> datetime.datetime:
    dt = datetime.datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


@dataclass(frozen=True, slots=True)
class Debt:
    id: int
    borrower_id: int
    lender_id: int
    principal: int
    remaining: int
    created_at: datetime.datetime
    last_accrual_at: datetime.datetime
    status: str
    note: str

    @property
    def is_open(self) -> bool:
        return self.status == OPEN

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "Debt":
        return cls(
            id=int(row["id"]),
            borrower_id=int(row["borrower_id"]),
            lender_id=int(row["lender_id"]),
            principal=int(row["amount_initial"]),
            remaining=int(row["amount_remaining"]),
            created_at=_parse_ts(row["created_at"]),
            last_accrual_at=_parse_ts(row["last_accrual_at"]),
            status=str(row["status"]),
            note=row["note"] or "",
        )


@dataclass(frozen=True, slots=True)
class BorrowerTotal:
    borrower_id: int
    remaining: int
    open_count: int


class DebtSession:
    """Statements bound to one open transaction. Obtain via DebtStore.transaction()."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    # ---------------- Reads ----------------
    async def get(self, debt_id: int) -> Optional[Debt]:
        async with self._db.execute("SELECT * FROM debts WHERE id = ?", (int(debt_id),)) as cur:
            row = await cur.fetchone()
        return Debt.from_row(row) if row else None

    async def open_debts(self) -> List[Debt]:
        """Every open debt, grouped by borrower (oldest first within a borrower)."""
        async with self._db.execute(
            "SELECT * FROM debts WHERE status = ? ORDER BY borrower_id, created_at, id", (OPEN,)
        ) as cur:
            rows = await cur.fetchall()
        return [Debt.from_row(r) for r in rows]

    async def open_debts_for(self, borrower_id: int) -> List[Debt]:
        """A borrower's open debts in repayment order (oldest first)."""
        async with self._db.execute(
            "SELECT * FROM debts WHERE borrower_id = ? AND status = ? ORDER BY created_at, id",
            (int(borrower_id), OPEN),
        ) as cur:
            rows = await cur.fetchall()
        return [Debt.from_row(r) for r in rows]

    async def open_totals(self) -> List[BorrowerTotal]:
        async with self._db.execute(
            "SELECT borrower_id, SUM(amount_remaining) AS total, COUNT(*) AS n "
            "FROM debts WHERE status = ? GROUP BY borrower_id ORDER BY borrower_id",
            (OPEN,),
        ) as cur:
            rows = await cur.fetchall()
        return [BorrowerTotal(int(r["borrower_id"]), int(r["total"]), int(r["n"])) for r in rows]

    async def total_open_for(self, borrower_id: int) -> int:
        async with self._db.execute(
            "SELECT COALESCE(SUM(amount_remaining), 0) FROM debts WHERE borrower_id = ? AND status = ?",
            (int(borrower_id), OPEN),
        ) as cur:
            row = await cur.fetchone()
        return int(row[0])

    # ---------------- Writes ----------------
    async def create(
        self,
        borrower_id: int,
        lender_id: int,
        amount: int,
        note: str = "",
        now: Optional[datetime.datetime] = None,
    ) -> Debt:
        if int(amount) <= 0:
            raise ValueError("Debt amount must be positive.")
        now = now or datetime.datetime.now(datetime.timezone.utc)
        stamp = _ts(now)
        async with self._db.execute(
            "INSERT INTO debts (borrower_id, lender_id, amount_initial, amount_remaining, "
            "created_at, last_accrual_at, status, note) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (int(borrower_id), int(lender_id), int(amount), int(amount), stamp, stamp, OPEN, note or ""),
        ) as cur:
            debt_id = cur.lastrowid
        logger.info(
            f"create:ok id={debt_id} borrower_id={borrower_id} lender_id={lender_id} amount={amount} note='{note}'"
        )
        return Debt(
            id=int(debt_id),
            borrower_id=int(borrower_id),
            lender_id=int(lender_id),
            principal=int(amount),
            remaining=int(amount),
            created_at=_parse_ts(stamp),
            last_accrual_at=_parse_ts(stamp),
            status=OPEN,
            note=note or "",
        )

    async def set_accrual(self, debt_id: int, remaining: int, last_accrual_at: datetime.datetime) -> bool:
        """Record an interest step. Paid debts are never touched."""
        async with self._db.execute(
            "UPDATE debts SET amount_remaining = ?, last_accrual_at = ? WHERE id = ? AND status = ?",
            (int(remaining), _ts(last_accrual_at), int(debt_id), OPEN),
        ) as cur:
            return cur.rowcount > 0

    async def set_remaining(self, debt_id: int, remaining: int) -> bool:
        """Record a repayment; zero closes the debt for good."""
        if remaining < 0:
            raise ValueError("Remaining balance cannot go negative.")
        if remaining == 0:
            sql, params = (
                "UPDATE debts SET amount_remaining = 0, status = ? WHERE id = ? AND status = ?",
                (PAID, int(debt_id), OPEN),
            )
        else:
            sql, params = (
                "UPDATE debts SET amount_remaining = ? WHERE id = ? AND status = ?",
                (int(remaining), int(debt_id), OPEN),
            )
        async with self._db.execute(sql, params) as cur:
            return cur.rowcount > 0

    async def delete(self, debt_id: int) -> bool:
        async with self._db.execute("DELETE FROM debts WHERE id = ?", (int(debt_id),)) as cur:
            existed = cur.rowcount > 0
        logger.info(f"delete:{'ok' if existed else 'miss'} id={debt_id}")
        return existed


class DebtStore:
    """Owns the connection; hands out one transaction at a time."""

    def __init__(self, path: str):
        self.path = path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        if self._db is not None:
            return
        # Autocommit mode: transaction() issues BEGIN/COMMIT itself.
        self._db = await aiosqlite.connect(self.path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA busy_timeout = 5000")
        await self._db.executescript(SCHEMA)
        logger.info(f"connect:ok path='{self.path}'")

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info(f"close:ok path='{self.path}'")

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[DebtSession]:
        if self._db is None:
            raise RuntimeError("DebtStore is not connected.")
        async with self._lock:
            await self._db.execute("BEGIN IMMEDIATE")
            try:
                yield DebtSession(self._db)
            except BaseException:
                await self._db.execute("ROLLBACK")
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug("transaction:rollback")
                raise
            else:
                try:
                    await self._db.execute("COMMIT")
                except BaseException:
                    # A failed COMMIT leaves the transaction open on the shared connection
                    if self._db.in_transaction:
                        await self._db.execute("ROLLBACK")
                    logger.warning("transaction:commit_failed rolled_back=True")
                    raise
