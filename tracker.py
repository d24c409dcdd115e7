# tracker.py
"""
Correlates admin triggers with confirmer output and applies them to the ledger.

    admin posts "$givekakera @user 500"   -> pending LOAN (nothing written yet)
    confirmer reacts ✅ on that message   -> interest accrued, debt created

    admin posts "$takekakera @user 300"   -> pending REPAY
    confirmer says "... 300 ... removed"  -> interest accrued, FIFO repayment

Keys per correlation mode:
    split   : LOAN by trigger message (reaction), REPAY by channel (message text)
    unified : both by trigger message, both confirmed by reaction
"""

from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional
import logging

from debts import Debt
from ledger import Ledger
from pending import CorrelationKey, PendingAction, PendingTable, Scope
from repayment import Allocation
from triggers import Kind, confirms_amount, is_checkmark, is_exempt, parse_trigger

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.tracker")

LOAN_NOTE = "Verified by Mudae"


@dataclass(frozen=True, slots=True)
class Outcome:
    """What a confirmed pending action did to the ledger."""
    action: PendingAction
    debt: Optional[Debt] = None
    allocations: List[Allocation] = field(default_factory=list)
    outstanding: int = 0


class LoanTracker:
    def __init__(
        self,
        ledger: Ledger,
        table: PendingTable,
        admin_ids: FrozenSet[int],
        confirmer_id: int,
        mode: str = "split",
    ):
        self.ledger = ledger
        self.table = table
        self.admin_ids = frozenset(admin_ids)
        self.confirmer_id = int(confirmer_id)
        self.mode = mode

    @property
    def tracking_enabled(self) -> bool:
        return self.table.tracking_enabled

    def set_tracking(self, enabled: bool) -> None:
        self.table.set_tracking(enabled)

    def key_for(self, kind: Kind, message_id: int, channel_id: int) -> CorrelationKey:
        if kind is Kind.REPAY and self.mode == "split":
            return CorrelationKey(Scope.CHANNEL, int(channel_id))
        return CorrelationKey(Scope.MESSAGE, int(message_id))

    # ---------------- Triggers ----------------
    def handle_admin_message(
        self,
        author_id: int,
        content: str,
        message_id: int,
        channel_id: int,
        now: Optional[float] = None,
    ) -> Optional[PendingAction]:
        if author_id not in self.admin_ids:
            return None
        if not self.tracking_enabled or is_exempt(content):
            return None
        trigger = parse_trigger(content)
        if trigger is None:
            return None
        key = self.key_for(trigger.kind, message_id, channel_id)
        return self.table.register(
            key, trigger.kind, author_id, trigger.target_id, trigger.amount, now=now
        )

    # ---------------- Confirmations ----------------
    def awaits_reaction(self, message_id: int) -> bool:
        """Cheap pre-check so callers only fetch messages that matter."""
        return self.tracking_enabled and CorrelationKey(Scope.MESSAGE, int(message_id)) in self.table

    async def confirm_reaction(
        self,
        reactor_id: int,
        emoji_name: Optional[str],
        message_id: int,
        now: Optional[datetime.datetime] = None,
    ) -> Optional[Outcome]:
        if reactor_id != self.confirmer_id or not self.tracking_enabled:
            return None
        if not is_checkmark(emoji_name):
            return None
        action = self.table.take(CorrelationKey(Scope.MESSAGE, int(message_id)))
        if action is None:
            return None
        logger.info(f"confirm:reaction key={action.key} kind={action.kind.value} amount={action.amount}")
        return await self.apply(action, now)

    async def confirm_message(
        self,
        author_id: int,
        content: str,
        channel_id: int,
        now: Optional[datetime.datetime] = None,
    ) -> Optional[Outcome]:
        if author_id != self.confirmer_id or not self.tracking_enabled:
            return None
        if self.mode != "split":
            return None
        key = CorrelationKey(Scope.CHANNEL, int(channel_id))
        pending = self.table.peek(key)
        if pending is None:
            return None
        action = self.table.take(key, lambda a: confirms_amount(content, a.amount))
        if action is None:
            logger.info(f"confirm:ignored key={key} want_amount={pending.amount} keyword='removed'")
            return None
        logger.info(f"confirm:message key={action.key} kind={action.kind.value} amount={action.amount}")
        return await self.apply(action, now)

    async def apply(self, action: PendingAction, now: Optional[datetime.datetime] = None) -> Outcome:
        """Write a confirmed action. The entry is already out of the table."""
        if action.kind is Kind.LOAN:
            debt = await self.ledger.record_loan(
                action.subject_id, action.initiator_id, action.amount, note=LOAN_NOTE, now=now
            )
            return Outcome(action=action, debt=debt)

        allocations = await self.ledger.repay(action.subject_id, action.amount, now=now)
        outstanding = await self.ledger.outstanding(action.subject_id, now=now)
        return Outcome(action=action, allocations=allocations, outstanding=outstanding)

    # ---------------- Housekeeping ----------------
    def sweep(self, now: Optional[float] = None) -> List[PendingAction]:
        return self.table.sweep(now)
