# pending.py
"""
In-memory table of triggers waiting for confirmation.

- One entry per correlation key; a newer trigger under the same key replaces
  the older one outright (no stacking).
- `take()` removes the entry it returns, so a confirmation can only ever be
  applied once. A repeated signal finds nothing.
- `sweep()` drops entries older than the retention window.
- The tracking flag lives here too; it is not persisted and starts enabled.

The table is owned by a single event loop; handlers run to completion between
awaits, and no method here awaits.
"""

from __future__ import annotations
import enum
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional
import logging

from config import PENDING_TTL_SECONDS
from triggers import Kind

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.pending")


class Scope(enum.Enum):
    MESSAGE = "message"
    CHANNEL = "channel"


class CorrelationKey(NamedTuple):
    scope: Scope
    id: int

    def __str__(self) -> str:
        return f"{self.scope.value}:{self.id}"


@dataclass(frozen=True, slots=True)
class PendingAction:
    key: CorrelationKey
    kind: Kind
    initiator_id: int
    subject_id: int
    amount: int
    created_at: float

    def age(self, now: float) -> float:
        return now - self.created_at


class PendingTable:
    def __init__(self, ttl_seconds: float = PENDING_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CorrelationKey, PendingAction] = {}
        self.tracking_enabled = True

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CorrelationKey) -> bool:
        return key in self._entries

    def set_tracking(self, enabled: bool) -> bool:
        """Set the flag; returns the previous value."""
        previous = self.tracking_enabled
        self.tracking_enabled = bool(enabled)
        logger.info(f"tracking:set enabled={self.tracking_enabled} was={previous}")
        return previous

    def register(
        self,
        key: CorrelationKey,
        kind: Kind,
        initiator_id: int,
        subject_id: int,
        amount: int,
        now: Optional[float] = None,
    ) -> Optional[PendingAction]:
        """Create or replace the entry at `key`. Returns None while tracking is off."""
        if not self.tracking_enabled:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"register:skip reason='tracking_disabled' key={key}")
            return None
        if amount <= 0:
            raise ValueError("Pending amount must be positive.")
        action = PendingAction(
            key=key,
            kind=kind,
            initiator_id=int(initiator_id),
            subject_id=int(subject_id),
            amount=int(amount),
            created_at=self._clock() if now is None else now,
        )
        replaced = self._entries.get(key)
        self._entries[key] = action
        if replaced is not None:
            logger.info(
                f"register:replace key={key} kind={kind.value} subject_id={subject_id} "
                f"amount={amount} replaced_amount={replaced.amount}"
            )
        else:
            logger.info(f"register:ok key={key} kind={kind.value} subject_id={subject_id} amount={amount}")
        return action

    def peek(self, key: CorrelationKey) -> Optional[PendingAction]:
        return self._entries.get(key)

    def take(
        self,
        key: CorrelationKey,
        accept: Optional[Callable[[PendingAction], bool]] = None,
    ) -> Optional[PendingAction]:
        """
        Remove and return the entry at `key` if `accept` (when given) approves it.
        A rejected or missing entry is left alone and None is returned.
        """
        action = self._entries.get(key)
        if action is None:
            return None
        if accept is not None and not accept(action):
            return None
        del self._entries[key]
        return action

    def discard(self, key: CorrelationKey) -> bool:
        return self._entries.pop(key, None) is not None

    def sweep(self, now: Optional[float] = None) -> List[PendingAction]:
        """Drop every entry older than the retention window; returns what was dropped."""
        now = self._clock() if now is None else now
        expired = [a for a in self._entries.values() if a.age(now) > self.ttl_seconds]
        for action in expired:
            del self._entries[action.key]
        if expired:
            logger.info(f"sweep:expired count={len(expired)} remaining={len(self._entries)}")
        return expired
