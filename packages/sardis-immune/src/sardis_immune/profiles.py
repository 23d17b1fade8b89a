"""
Recipient profile builder.

A profile is a pure function of the ledger: it is rebuilt from the full
per-counterparty history on every new transaction instead of being merged
incrementally. That costs O(n) in the counterparty's history per event,
which is accepted for the volumes this engine targets (thousands of
records) in exchange for never carrying a stale running aggregate.
"""
from __future__ import annotations

import logging
import statistics
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_SETTINGS, ImmuneSettings
from .models import CadencePattern, RecipientProfile, RiskAssessment, TransactionRecord

logger = logging.getLogger(__name__)


def spend_bearing(transactions: Iterable[TransactionRecord]) -> List[TransactionRecord]:
    """Records that count towards spend (anything but failed), oldest first."""
    return sorted(
        (tx for tx in transactions if tx.status.bears_spend),
        key=lambda tx: tx.timestamp,
    )


def is_round_amount(amount: Decimal, settings: ImmuneSettings = DEFAULT_SETTINGS) -> bool:
    """Round and large: a multiple of the round unit and above the minimum."""
    return amount % settings.round_amount_unit == 0 and amount > settings.round_amount_minimum


class RecipientProfileBuilder:
    """
    Builds RecipientProfile from ledger history.

    Usage:
        builder = RecipientProfileBuilder()
        profile = builder.build("0xcafe...", ledger.all())
        if profile is None:
            ...  # no spend-bearing history for this counterparty
    """

    def __init__(self, settings: ImmuneSettings = DEFAULT_SETTINGS):
        self.settings = settings

    def build(
        self,
        counterparty: str,
        transactions: Sequence[TransactionRecord],
    ) -> Optional[RecipientProfile]:
        """
        Build the profile for one counterparty.

        Args:
            counterparty: Counterparty identifier
            transactions: Full ledger history (all counterparties)

        Returns:
            RecipientProfile, or None when the counterparty has no
            completed or pending transactions
        """
        population = spend_bearing(transactions)
        history = [tx for tx in population if tx.counterparty == counterparty]
        if not history:
            return None

        total = sum((tx.amount for tx in history), Decimal("0"))
        purposes: Dict[str, int] = {}
        for tx in history:
            if tx.purpose:
                purposes[tx.purpose] = purposes.get(tx.purpose, 0) + 1

        overall = sum((tx.amount for tx in population), Decimal("0"))

        profile = RecipientProfile(
            counterparty=counterparty,
            transaction_count=len(history),
            total_amount=total,
            average_amount=total / len(history),
            purposes=purposes,
            cadence=self.classify_cadence(history),
            risk=RiskAssessment(
                concentration_risk=self._concentration_risk(total, overall),
                convenience_bias=self._convenience_bias(history),
                value_decline=self._value_decline(history),
            ),
            last_interaction=history[-1].timestamp,
        )
        logger.debug(
            "Rebuilt profile for %s from %d transactions (cadence=%s)",
            counterparty,
            len(history),
            profile.cadence.value,
        )
        return profile

    def classify_cadence(self, history: Sequence[TransactionRecord]) -> CadencePattern:
        """
        Classify the timing/amount shape of a time-ordered history.

        Low variance of the inter-transaction gaps (below
        ``cadence_variance_ratio`` of the mean gap) is regular; otherwise
        the amount trend decides. Short histories are always sporadic.
        """
        if len(history) < self.settings.cadence_min_transactions:
            return CadencePattern.SPORADIC

        intervals = [
            (later.timestamp - earlier.timestamp).total_seconds()
            for earlier, later in zip(history, history[1:])
        ]
        mean_interval = statistics.fmean(intervals)
        variance = statistics.pvariance(intervals, mu=mean_interval)
        if variance < mean_interval * self.settings.cadence_variance_ratio:
            return CadencePattern.REGULAR

        amounts = [tx.amount for tx in history]
        pairs = list(zip(amounts, amounts[1:]))
        if all(later >= earlier for earlier, later in pairs):
            return CadencePattern.INCREASING
        if all(later <= earlier for earlier, later in pairs):
            return CadencePattern.DECREASING
        return CadencePattern.SPORADIC

    def _concentration_risk(self, counterparty_total: Decimal, overall_total: Decimal) -> float:
        if overall_total == 0:
            return 0.0
        return min(1.0, float(counterparty_total / overall_total) * 2)

    def _convenience_bias(self, history: Sequence[TransactionRecord]) -> float:
        round_count = sum(1 for tx in history if is_round_amount(tx.amount, self.settings))
        return round_count / len(history)

    def _value_decline(self, history: Sequence[TransactionRecord]) -> float:
        window = self.settings.value_decline_window
        if len(history) < window:
            return 0.0
        amounts = [tx.amount for tx in history]
        recent = sum(amounts[-window:], Decimal("0")) / window
        earlier = sum(amounts[:window], Decimal("0")) / window
        if recent > earlier * (1 + Decimal(str(self.settings.declining_increase_threshold))):
            return self.settings.value_decline_score
        return 0.0
