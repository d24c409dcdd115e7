import datetime

import pytest
import pytest_asyncio

from debts import DebtStore
from ledger import Ledger
from pending import PendingTable
from tracker import LoanTracker

T0 = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

ADMIN_ID = 111
BORROWER_ID = 222
OTHER_BORROWER_ID = 333
CONFIRMER_ID = 432610292342587392


class FakeClock:
    """Stand-in for time.time() that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def table(clock):
    return PendingTable(ttl_seconds=300, clock=clock)


@pytest_asyncio.fixture
async def store(tmp_path):
    s = DebtStore(str(tmp_path / "ledger.db"))
    await s.connect()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def ledger(store):
    return Ledger(store)


@pytest_asyncio.fixture
async def tracker(ledger, table):
    return LoanTracker(ledger, table, admin_ids=frozenset({ADMIN_ID}), confirmer_id=CONFIRMER_ID, mode="split")


@pytest_asyncio.fixture
async def unified_tracker(ledger, table):
    return LoanTracker(ledger, table, admin_ids=frozenset({ADMIN_ID}), confirmer_id=CONFIRMER_ID, mode="unified")
