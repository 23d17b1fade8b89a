"""
Economic pattern detectors.

Each detector inspects one new transaction against the ledger and either
returns a freshly built EconomicPattern or None. Detectors never touch the
immune memory; ImmuneMemoryStore merges their output by
(pattern_type, counterparty).

Detectors:
   - Recurring micro-costs: many small payments to one counterparty that add
     up to material waste no single review would flag
   - Vendor concentration: one counterparty holding too large a share of
     total spend
   - Convenience bias: an improbable share of round, large amounts,
     suggesting premium pricing accepted without scrutiny
   - Declining value: payments to the same counterparty rising over time
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from .config import DEFAULT_SETTINGS, ImmuneSettings
from .models import (
    EconomicPattern,
    PatternOccurrence,
    PatternType,
    ThreatLevel,
    TransactionRecord,
)
from .profiles import is_round_amount, spend_bearing

logger = logging.getLogger(__name__)

Detector = Callable[
    [TransactionRecord, Sequence[TransactionRecord], ImmuneSettings],
    Optional[EconomicPattern],
]


def _population(
    new_tx: TransactionRecord,
    transactions: Sequence[TransactionRecord],
) -> List[TransactionRecord]:
    """Spend-bearing ledger records, with the new transaction if not yet recorded."""
    records = {tx.id: tx for tx in transactions}
    records.setdefault(new_tx.id, new_tx)
    return spend_bearing(records.values())


def _context(tx: TransactionRecord) -> str:
    return tx.purpose or "No purpose specified"


def detect_recurring_micro_costs(
    new_tx: TransactionRecord,
    transactions: Sequence[TransactionRecord],
    settings: ImmuneSettings = DEFAULT_SETTINGS,
) -> Optional[EconomicPattern]:
    threshold = settings.micro_cost_threshold
    if new_tx.amount >= threshold:
        return None

    micro = [
        tx
        for tx in _population(new_tx, transactions)
        if tx.counterparty == new_tx.counterparty and tx.amount < threshold
    ]
    if len(micro) < settings.micro_cost_min_occurrences:
        return None

    total = sum((tx.amount for tx in micro), Decimal("0"))
    if total > settings.micro_cost_high_total:
        threat = ThreatLevel.HIGH
    elif total > settings.micro_cost_medium_total:
        threat = ThreatLevel.MEDIUM
    else:
        threat = ThreatLevel.LOW

    return EconomicPattern(
        pattern_type=PatternType.RECURRING_MICRO_COSTS,
        counterparty=new_tx.counterparty,
        description=f"Recurring small payments to {new_tx.counterparty}",
        threat_level=threat,
        total_impact=total,
        occurrences=[
            PatternOccurrence(
                transaction_id=tx.id,
                timestamp=tx.timestamp,
                severity=float(tx.amount / threshold),
                context=_context(tx),
            )
            for tx in micro
        ],
        learning_confidence=0.7,
    )


def detect_vendor_concentration(
    new_tx: TransactionRecord,
    transactions: Sequence[TransactionRecord],
    settings: ImmuneSettings = DEFAULT_SETTINGS,
) -> Optional[EconomicPattern]:
    population = _population(new_tx, transactions)
    total_spend = sum((tx.amount for tx in population), Decimal("0"))
    if total_spend == 0:
        return None

    counterparty_total = sum(
        (tx.amount for tx in population if tx.counterparty == new_tx.counterparty),
        Decimal("0"),
    )
    share = counterparty_total / total_spend
    # Compare in Decimal so a share of exactly 0.3 stays at the boundary.
    if share <= Decimal(str(settings.concentration_threshold)):
        return None

    if share > Decimal(str(settings.concentration_high)):
        threat = ThreatLevel.HIGH
    elif share > Decimal(str(settings.concentration_medium)):
        threat = ThreatLevel.MEDIUM
    else:
        threat = ThreatLevel.LOW

    return EconomicPattern(
        pattern_type=PatternType.VENDOR_CONCENTRATION,
        counterparty=new_tx.counterparty,
        description=f"High concentration of spending with {new_tx.counterparty}",
        threat_level=threat,
        total_impact=counterparty_total,
        occurrences=[
            PatternOccurrence(
                transaction_id=new_tx.id,
                timestamp=new_tx.timestamp,
                severity=float(share),
                context=f"{round(float(share) * 100)}% of total spending",
            )
        ],
        learning_confidence=0.8,
    )


def detect_convenience_bias(
    new_tx: TransactionRecord,
    transactions: Sequence[TransactionRecord],
    settings: ImmuneSettings = DEFAULT_SETTINGS,
) -> Optional[EconomicPattern]:
    if not is_round_amount(new_tx.amount, settings):
        return None

    population = _population(new_tx, transactions)
    if not population:
        return None
    round_txs = [tx for tx in population if is_round_amount(tx.amount, settings)]
    ratio = len(round_txs) / len(population)
    if ratio < settings.convenience_ratio_threshold:
        return None

    threat = ThreatLevel.MEDIUM if ratio > settings.convenience_ratio_medium else ThreatLevel.LOW
    # No invoice data to compare against, so the premium is an estimate.
    premium = sum((tx.amount for tx in round_txs), Decimal("0")) * settings.convenience_premium_rate

    return EconomicPattern(
        pattern_type=PatternType.CONVENIENCE_BIAS,
        counterparty=new_tx.counterparty,
        description="Frequent use of round payment amounts suggesting convenience bias",
        threat_level=threat,
        total_impact=premium,
        occurrences=[
            PatternOccurrence(
                transaction_id=tx.id,
                timestamp=tx.timestamp,
                severity=ratio,
                context=f"Round amount: {tx.amount}",
            )
            for tx in round_txs[-settings.convenience_occurrence_window:]
        ],
        learning_confidence=0.6,
    )


def detect_declining_value(
    new_tx: TransactionRecord,
    transactions: Sequence[TransactionRecord],
    settings: ImmuneSettings = DEFAULT_SETTINGS,
) -> Optional[EconomicPattern]:
    history = [
        tx for tx in _population(new_tx, transactions) if tx.counterparty == new_tx.counterparty
    ]
    if len(history) < settings.declining_min_transactions:
        return None

    window = settings.declining_window
    recent_avg = sum((tx.amount for tx in history[-window:]), Decimal("0")) / window
    earlier_avg = sum((tx.amount for tx in history[:window]), Decimal("0")) / window
    trigger = earlier_avg * (1 + Decimal(str(settings.declining_increase_threshold)))
    if recent_avg <= trigger:
        return None

    high = earlier_avg * (1 + Decimal(str(settings.declining_high_increase)))
    threat = ThreatLevel.HIGH if recent_avg > high else ThreatLevel.MEDIUM

    def severity(tx: TransactionRecord) -> float:
        if earlier_avg == 0:
            return 1.0
        return min(1.0, float(tx.amount / earlier_avg))

    return EconomicPattern(
        pattern_type=PatternType.DECLINING_VALUE,
        counterparty=new_tx.counterparty,
        description=f"Increasing payments to {new_tx.counterparty} may indicate declining value",
        threat_level=threat,
        total_impact=recent_avg - earlier_avg,
        occurrences=[
            PatternOccurrence(
                transaction_id=tx.id,
                timestamp=tx.timestamp,
                severity=severity(tx),
                context=f"Amount: {tx.amount} vs earlier avg: {earlier_avg:.2f}",
            )
            for tx in history[-settings.declining_occurrence_window:]
        ],
        learning_confidence=0.5,
    )


DETECTORS: tuple[Detector, ...] = (
    detect_recurring_micro_costs,
    detect_vendor_concentration,
    detect_convenience_bias,
    detect_declining_value,
)


def detect_patterns(
    new_tx: TransactionRecord,
    transactions: Sequence[TransactionRecord],
    settings: ImmuneSettings = DEFAULT_SETTINGS,
) -> List[EconomicPattern]:
    """Run every detector and collect the patterns that fired."""
    detected = []
    for detector in DETECTORS:
        pattern = detector(new_tx, transactions, settings)
        if pattern is not None:
            logger.debug(
                "%s fired for %s (threat=%s)",
                pattern.pattern_type.value,
                new_tx.counterparty,
                pattern.threat_level.value,
            )
            detected.append(pattern)
    return detected
