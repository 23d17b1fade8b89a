"""
In-memory transaction ledger read by the immune engine.

The ledger is append-only: records are never deleted, and the only change
allowed after append is a forward lifecycle move
(pending -> confirming -> completed | failed). Every profile and pattern
computation reads from here.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .exceptions import (
    DuplicateTransactionError,
    InvalidTransactionError,
    TransactionNotFoundError,
)
from .models import TransactionRecord, TransactionStatus

logger = logging.getLogger(__name__)


class TransactionLedger:
    """
    Thread-safe, append-only collection of TransactionRecord.

    Usage:
        ledger = TransactionLedger()
        tx = ledger.append(TransactionRecord.create("0xcafe...", "15.00", "coffee"))
        ledger.update_status(tx.id, TransactionStatus.COMPLETED)
        history = ledger.for_counterparty("0xcafe...")
    """

    def __init__(self, transactions: Optional[List[TransactionRecord]] = None):
        self._records: Dict[str, TransactionRecord] = {}
        self._order: List[str] = []
        self._lock = threading.RLock()
        for tx in transactions or []:
            self.append(tx)

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)

    def append(self, transaction: TransactionRecord) -> TransactionRecord:
        if not isinstance(transaction, TransactionRecord):
            raise InvalidTransactionError(
                f"Expected TransactionRecord, got {type(transaction).__name__}"
            )
        with self._lock:
            if transaction.id in self._records:
                raise DuplicateTransactionError(transaction.id)
            self._records[transaction.id] = transaction
            self._order.append(transaction.id)
        logger.debug(
            "Ledger append %s: %s to %s",
            transaction.id,
            transaction.amount,
            transaction.counterparty,
        )
        return transaction

    def update_status(self, transaction_id: str, status: TransactionStatus) -> TransactionRecord:
        """Move a record forward in its lifecycle. Finalized records are immutable."""
        status = TransactionStatus(status)
        with self._lock:
            current = self._records.get(transaction_id)
            if current is None:
                raise TransactionNotFoundError(transaction_id)
            if current.status == status:
                return current
            if not current.can_move_to(status):
                raise InvalidTransactionError(
                    f"Cannot move transaction {transaction_id} from {current.status.value} to {status.value}",
                    field="status",
                    details={"transaction_id": transaction_id},
                )
            updated = dataclasses.replace(current, status=status)
            self._records[transaction_id] = updated
        logger.debug("Ledger status %s: %s -> %s", transaction_id, current.status.value, status.value)
        return updated

    def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        with self._lock:
            return self._records.get(transaction_id)

    def contains(self, transaction_id: str) -> bool:
        with self._lock:
            return transaction_id in self._records

    def all(self) -> List[TransactionRecord]:
        """All records ordered by timestamp (append order breaks ties)."""
        with self._lock:
            records = [self._records[tx_id] for tx_id in self._order]
        return sorted(records, key=lambda tx: tx.timestamp)

    def for_counterparty(self, counterparty: str) -> List[TransactionRecord]:
        return [tx for tx in self.all() if tx.counterparty == counterparty]

    def by_status(self, status: TransactionStatus) -> List[TransactionRecord]:
        status = TransactionStatus(status)
        return [tx for tx in self.all() if tx.status == status]

    def in_range(self, start: datetime, end: datetime) -> List[TransactionRecord]:
        return [tx for tx in self.all() if start <= tx.timestamp <= end]

    def recent(self, count: int = 10) -> List[TransactionRecord]:
        """Newest first."""
        return list(reversed(self.all()))[:count]

    def total_spend(self) -> Decimal:
        return sum((tx.amount for tx in self.all() if tx.status.bears_spend), Decimal("0"))

    def stats(self) -> Dict[str, Any]:
        records = self.all()
        completed = [tx for tx in records if tx.status == TransactionStatus.COMPLETED]
        volume = sum((tx.amount for tx in completed), Decimal("0"))
        return {
            "total": len(records),
            "completed": len(completed),
            "pending": sum(
                1
                for tx in records
                if tx.status in (TransactionStatus.PENDING, TransactionStatus.CONFIRMING)
            ),
            "failed": sum(1 for tx in records if tx.status == TransactionStatus.FAILED),
            "total_volume": volume,
            "average_amount": volume / len(completed) if completed else Decimal("0"),
        }
