#!/usr/bin/env python3
"""Transaction ledger: the live draft and the completed-transaction history."""

import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Tuple

from voice_upi.utils import upi_log


class InvalidDraftError(Exception):
    """Commit attempted with a draft missing recipient, amount or UPI id."""

    def __init__(self, missing: Tuple[str, ...]):
        self.missing = missing
        super().__init__(f"Draft is missing: {', '.join(missing)}")


class TransactionStatus(Enum):
    SUCCESS = "Success"


@dataclass(frozen=True)
class Contact:
    id: int
    name: str
    upi_id: str


@dataclass(frozen=True)
class DraftTransaction:
    recipient: str = ""
    amount: str = ""
    upi_id: str = ""
    note: str = ""

    REQUIRED_FIELDS = ("recipient", "amount", "upi_id")

    def missing_fields(self) -> Tuple[str, ...]:
        return tuple(name for name in self.REQUIRED_FIELDS if not getattr(self, name))

    def is_empty(self) -> bool:
        return not (self.recipient or self.amount or self.upi_id or self.note)


@dataclass(frozen=True)
class CompletedTransaction:
    id: int
    recipient: str
    amount: str
    upi_id: str
    note: str
    timestamp: str
    status: TransactionStatus = TransactionStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient": self.recipient,
            "amount": self.amount,
            "upi_id": self.upi_id,
            "note": self.note,
            "timestamp": self.timestamp,
            "status": self.status.value,
        }


def _display_timestamp(now: datetime) -> str:
    # en-IN style: 19/10/2026, 08:28:00 PM
    return now.strftime("%d/%m/%Y, %I:%M:%S %p")


class TransactionLedger:
    """
    Owns the single in-progress draft and the append-only history.

    History is kept most-recent-first; entries are never mutated or removed.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._draft = DraftTransaction()
        self._history: list = []
        self._last_id = 0
        self._lock = threading.Lock()

    @property
    def draft(self) -> DraftTransaction:
        with self._lock:
            return self._draft

    def begin_draft(self):
        """Reset the draft to all-empty."""
        with self._lock:
            self._draft = DraftTransaction()

    def update_draft(self, **fields) -> DraftTransaction:
        """Merge partial fields into the live draft. Unknown fields raise TypeError."""
        with self._lock:
            self._draft = replace(self._draft, **fields)
            return self._draft

    def commit(self) -> CompletedTransaction:
        """Turn the draft into a CompletedTransaction and prepend it to history."""
        with self._lock:
            draft = self._draft
            missing = draft.missing_fields()
            if missing:
                raise InvalidDraftError(missing)

            now = self._clock()
            # Millisecond timestamp, bumped so ids stay strictly increasing
            tx_id = max(int(now * 1000), self._last_id + 1)
            self._last_id = tx_id

            transaction = CompletedTransaction(
                id=tx_id,
                recipient=draft.recipient,
                amount=draft.amount,
                upi_id=draft.upi_id,
                note=draft.note,
                timestamp=_display_timestamp(datetime.fromtimestamp(now)),
            )
            self._history.insert(0, transaction)

        upi_log("LEDGER", f"Committed #{transaction.id}: {transaction.amount} -> {transaction.recipient}")
        return transaction

    def history(self) -> Tuple[CompletedTransaction, ...]:
        """Most-recent-first snapshot."""
        with self._lock:
            return tuple(self._history)

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)
