"""
Immune memory store: the aggregate root of the immune engine.

How a decision is recorded:
────────────────────────────
1. Validate at the boundary: the transaction must be a TransactionRecord
   already in the ledger, the decision must parse into ImmuneDecision.
   Nothing is mutated if either fails.
2. Stage every change on copies:
   - recompute the counterparty's RecipientProfile from the ledger
   - append one occurrence per detected pattern label to the
     (pattern_type, counterparty) pattern, creating it if absent
   - preview the clamped resilience score
   - build a RiskSignal when the threat level is HIGH or CRITICAL
3. Commit the staged changes under the store lock in one step.

All mutations and consistent reads are serialized by a single RLock.
Readers that tolerate stale data can work from snapshot(), which returns a
deep copy of the memory.
"""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .adaptation import SensitivityAdapter, adaptation_rate
from .config import DEFAULT_SETTINGS, ImmuneSettings
from .decision import ImmuneDecision, parse_decision
from .detectors import detect_patterns
from .exceptions import (
    ImmuneStoreClosedError,
    ImmuneValidationError,
    InvalidTransactionError,
    PatternNotFoundError,
    SignalNotFoundError,
    raise_invariant_violation,
)
from .ledger import TransactionLedger
from .logging_config import LogContext
from .models import (
    AdaptationEvent,
    AdaptationOutcome,
    EconomicPattern,
    ImmuneMemory,
    PatternOccurrence,
    PatternType,
    RecipientProfile,
    RiskSignal,
    ThreatLevel,
    TransactionRecord,
)
from .profiles import RecipientProfileBuilder
from .resilience import ResilienceScoreController, ResilienceStatus

logger = logging.getLogger(__name__)

PatternKey = Tuple[PatternType, str]


@dataclass
class TransactionOutcome:
    """What one record_transaction_outcome call changed."""

    transaction_id: str
    profile: Optional[RecipientProfile]
    patterns: List[EconomicPattern]
    resilience_score: int
    signal: Optional[RiskSignal] = None


@dataclass
class ImmuneStatus:
    """Consistent view of score, band and signals for status endpoints."""

    resilience_score: int
    resilience_status: ResilienceStatus
    active_risk_signals: List[RiskSignal]
    learned_patterns_count: int
    active_patterns_count: int
    adaptation_rate: float
    trend: str
    last_updated: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resilience_score": self.resilience_score,
            "resilience_status": self.resilience_status.value,
            "active_risk_signals": [s.to_dict() for s in self.active_risk_signals],
            "learned_patterns_count": self.learned_patterns_count,
            "active_patterns_count": self.active_patterns_count,
            "adaptation_rate": self.adaptation_rate,
            "trend": self.trend,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass
class ImmuneContext:
    """Historical context handed to the reasoning component before it decides."""

    counterparty: str
    recipient_history: Optional[Dict[str, Any]]
    detected_patterns: List[PatternType]
    memory_references: List[str]
    resilience_score: int
    resilience_status: ResilienceStatus
    known_patterns: List[EconomicPattern] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counterparty": self.counterparty,
            "recipient_history": self.recipient_history,
            "detected_patterns": [p.value for p in self.detected_patterns],
            "memory_references": list(self.memory_references),
            "resilience_score": self.resilience_score,
            "resilience_status": self.resilience_status.value,
            "known_patterns": [p.to_dict() for p in self.known_patterns],
        }


class ImmuneMemoryStore:
    """
    Owner of one agent's immune memory.

    Constructed explicitly by the composing service and passed by
    reference; there is no module-level instance.

    Usage:
        ledger = TransactionLedger()
        store = ImmuneMemoryStore(ledger, agent_id="agent_123")

        tx = ledger.append(TransactionRecord.create("0xcafe...", "15", "coffee"))
        context = store.build_context("0xcafe...", Decimal("15"))
        decision = reasoning.decide(tx, context)   # external collaborator
        store.record_transaction_outcome(tx, decision)

        store.get_resilience_score()
        store.get_active_risk_signals()
    """

    def __init__(
        self,
        ledger: TransactionLedger,
        settings: Optional[ImmuneSettings] = None,
        agent_id: Optional[str] = None,
        wallet_id: Optional[str] = None,
    ):
        self.ledger = ledger
        self.settings = settings or DEFAULT_SETTINGS
        self.agent_id = agent_id
        self.wallet_id = wallet_id

        self._profiles = RecipientProfileBuilder(self.settings)
        self._resilience = ResilienceScoreController(
            initial=self.settings.initial_resilience_score,
            history_limit=self.settings.resilience_history_limit,
        )
        self._adapter = SensitivityAdapter(self.settings)
        self._memory = ImmuneMemory(resilience_score=self._resilience.score)
        self._pattern_index: Dict[PatternKey, str] = {}
        self._lock = threading.RLock()
        self._closed = False

        logger.info("ImmuneMemoryStore initialized for agent=%s wallet=%s", agent_id, wallet_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> "ImmuneMemoryStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._closed = True
                logger.info("ImmuneMemoryStore closed for agent=%s", self.agent_id)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ImmuneStoreClosedError()

    def _log_context(self, transaction_id: Optional[str] = None) -> LogContext:
        return LogContext(
            agent_id=self.agent_id,
            wallet_id=self.wallet_id,
            transaction_id=transaction_id,
        )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record_transaction_outcome(
        self,
        transaction: TransactionRecord,
        decision: Union[ImmuneDecision, Mapping[str, Any]],
    ) -> TransactionOutcome:
        """
        Fold one reasoning decision into the immune memory.

        Args:
            transaction: The transaction the decision was made for; must
                already be in the ledger
            decision: ImmuneDecision or a raw mapping to validate

        Returns:
            TransactionOutcome describing the committed changes

        Raises:
            InvalidTransactionError: transaction malformed or not in the ledger
            InvalidDecisionError: decision missing a field or malformed
            InvariantViolationError: internal state would become inconsistent
        """
        self._ensure_open()
        with self._log_context(getattr(transaction, "id", None)):
            tx = self._resolve_transaction(transaction)
            parsed = parse_decision(decision)

            with self._lock:
                self._ensure_open()

                # Stage
                profile = self._profiles.build(tx.counterparty, self.ledger.all())
                staged = [
                    self._stage_decision_pattern(pattern_type, tx, parsed.threat_level)
                    for pattern_type in dict.fromkeys(parsed.patterns_detected)
                ]
                self._resilience.preview(parsed.resilience_impact)
                signal = self._build_signal(tx, parsed) if parsed.threat_level.raises_signal else None

                # Commit
                now = datetime.now(timezone.utc)
                self._memory.resilience_score = self._resilience.apply(parsed.resilience_impact, at=now)
                self._memory.resilience_history = self._resilience.history
                if profile is not None:
                    self._memory.recipients[tx.counterparty] = profile
                for pattern, created in staged:
                    self._commit_pattern(pattern)
                    if created:
                        logger.info(
                            "New %s pattern for %s (threat=%s)",
                            pattern.pattern_type.value,
                            pattern.counterparty,
                            pattern.threat_level.value,
                        )
                if signal is not None:
                    self._memory.signals.append(signal)
                    logger.warning(
                        "Risk signal %s raised: %s", signal.id, signal.description
                    )
                self._memory.last_updated = now

                return TransactionOutcome(
                    transaction_id=tx.id,
                    profile=copy.deepcopy(profile),
                    patterns=[copy.deepcopy(p) for p, _ in staged],
                    resilience_score=self._memory.resilience_score,
                    signal=copy.deepcopy(signal),
                )

    def observe_transaction(self, transaction: TransactionRecord) -> List[EconomicPattern]:
        """
        Run the detectors for a ledger transaction and merge what fires.

        Returns:
            The merged patterns (copies), one per detector that fired
        """
        self._ensure_open()
        with self._log_context(getattr(transaction, "id", None)):
            tx = self._resolve_transaction(transaction)
            with self._lock:
                self._ensure_open()
                detected = detect_patterns(tx, self.ledger.all(), self.settings)
                merged = [self._merge_detected(pattern) for pattern in detected]
                profile = self._profiles.build(tx.counterparty, self.ledger.all())
                if profile is not None:
                    self._memory.recipients[tx.counterparty] = profile
                for pattern in merged:
                    self._commit_pattern(pattern)
                if merged:
                    self._memory.last_updated = datetime.now(timezone.utc)
                return [copy.deepcopy(p) for p in merged]

    def adapt_sensitivity(
        self,
        pattern_type: Union[PatternType, str],
        outcome: Union[AdaptationOutcome, str],
    ) -> None:
        """Record outcome feedback and retune every pattern of that type."""
        self._ensure_open()
        try:
            pattern_type = PatternType(pattern_type)
        except ValueError as e:
            raise ImmuneValidationError(
                f"Unknown pattern type: {pattern_type!r}", field="pattern_type"
            ) from e
        parsed = SensitivityAdapter.parse_outcome(outcome)

        with self._lock, self._log_context():
            self._ensure_open()
            event = self._adapter.adapt(self._memory.patterns.values(), pattern_type, parsed)
            self._memory.adaptations.append(event)
            self._memory.last_updated = event.timestamp

    def resolve_pattern(self, pattern_id: str) -> EconomicPattern:
        """Mark a pattern inactive. Operator action; idempotent."""
        self._ensure_open()
        with self._lock:
            pattern = self._memory.patterns.get(pattern_id)
            if pattern is None:
                raise PatternNotFoundError(pattern_id)
            if pattern.is_active:
                pattern.is_active = False
                self._memory.last_updated = datetime.now(timezone.utc)
                logger.info("Pattern %s resolved", pattern_id)
            return copy.deepcopy(pattern)

    def resolve_risk_signal(self, signal_id: str) -> RiskSignal:
        """Mark a risk signal resolved. Operator action; idempotent."""
        self._ensure_open()
        with self._lock:
            for signal in self._memory.signals:
                if signal.id == signal_id:
                    break
            else:
                raise SignalNotFoundError(signal_id)
            if not signal.is_resolved:
                now = datetime.now(timezone.utc)
                signal.is_resolved = True
                signal.resolved_at = now
                self._memory.last_updated = now
                logger.info("Risk signal %s resolved", signal_id)
            return copy.deepcopy(signal)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def get_resilience_score(self) -> int:
        with self._lock:
            return self._memory.resilience_score

    def get_resilience_status(self) -> ResilienceStatus:
        with self._lock:
            return ResilienceStatus.for_score(self._memory.resilience_score)

    def get_active_risk_signals(self) -> List[RiskSignal]:
        """Unresolved signals, most recent first."""
        with self._lock:
            active = [s for s in self._memory.signals if not s.is_resolved]
            return copy.deepcopy(list(reversed(active)))

    def get_risk_signals(self) -> List[RiskSignal]:
        with self._lock:
            return copy.deepcopy(self._memory.signals)

    def get_patterns(self, active_only: bool = False) -> List[EconomicPattern]:
        with self._lock:
            patterns = [
                p for p in self._memory.patterns.values() if p.is_active or not active_only
            ]
            return copy.deepcopy(patterns)

    def get_pattern(self, pattern_id: str) -> Optional[EconomicPattern]:
        with self._lock:
            return copy.deepcopy(self._memory.patterns.get(pattern_id))

    def find_pattern(
        self,
        pattern_type: Union[PatternType, str],
        counterparty: str,
    ) -> Optional[EconomicPattern]:
        with self._lock:
            pattern_id = self._pattern_index.get((PatternType(pattern_type), counterparty))
            if pattern_id is None:
                return None
            return copy.deepcopy(self._memory.patterns[pattern_id])

    def get_recipient_profile(self, counterparty: str) -> Optional[RecipientProfile]:
        """Cached profile, built from the ledger on first request; None without history."""
        with self._lock:
            profile = self._memory.recipients.get(counterparty)
            if profile is None:
                profile = self._profiles.build(counterparty, self.ledger.all())
                if profile is None:
                    return None
                self._memory.recipients[counterparty] = profile
            return copy.deepcopy(profile)

    def get_recipients(self) -> List[RecipientProfile]:
        with self._lock:
            return copy.deepcopy(list(self._memory.recipients.values()))

    def get_adaptations(self) -> List[AdaptationEvent]:
        with self._lock:
            return copy.deepcopy(self._memory.adaptations)

    def get_status(self) -> ImmuneStatus:
        """Score, band and signals taken under one lock acquisition."""
        with self._lock:
            patterns = list(self._memory.patterns.values())
            return ImmuneStatus(
                resilience_score=self._memory.resilience_score,
                resilience_status=ResilienceStatus.for_score(self._memory.resilience_score),
                active_risk_signals=self.get_active_risk_signals(),
                learned_patterns_count=len(patterns),
                active_patterns_count=sum(1 for p in patterns if p.is_active),
                adaptation_rate=adaptation_rate(self._memory.adaptations),
                trend=self._resilience.trend().value,
                last_updated=self._memory.last_updated,
            )

    def snapshot(self) -> ImmuneMemory:
        """Deep copy of the memory for lock-free readers."""
        with self._lock:
            return copy.deepcopy(self._memory)

    def dump(self) -> Dict[str, Any]:
        """JSON-ready debugging dump of the memory plus summary stats."""
        memory = self.snapshot()
        ledger_stats = {
            k: str(v) if isinstance(v, Decimal) else v for k, v in self.ledger.stats().items()
        }
        return {
            "memory": memory.to_dict(),
            "stats": {
                "total_patterns": len(memory.patterns),
                "active_patterns": sum(1 for p in memory.patterns.values() if p.is_active),
                "total_recipients": len(memory.recipients),
                "total_signals": len(memory.signals),
                "active_signals": sum(1 for s in memory.signals if not s.is_resolved),
                "total_adaptations": len(memory.adaptations),
                "ledger": ledger_stats,
            },
        }

    def build_context(
        self,
        counterparty: str,
        amount: Any,
        purpose: Optional[str] = None,
    ) -> ImmuneContext:
        """
        Summarize history for a proposed payment before the reasoning call.

        Runs the detectors against a hypothetical pending transaction; never
        mutates the memory.
        """
        proposal = TransactionRecord.create(counterparty, amount, purpose)
        history = self.ledger.all()
        recipient_txs = [
            tx for tx in history if tx.counterparty == counterparty and tx.status.bears_spend
        ]

        recipient_history = None
        if recipient_txs:
            total = sum((tx.amount for tx in recipient_txs), Decimal("0"))
            recipient_history = {
                "total_transactions": len(recipient_txs),
                "total_amount": str(total),
                "average_amount": str(total / len(recipient_txs)),
                "last_transaction": recipient_txs[-1].timestamp.isoformat(),
                "purposes": list(dict.fromkeys(tx.purpose for tx in recipient_txs if tx.purpose)),
            }

        detected = detect_patterns(proposal, history, self.settings)
        references = [
            f"{p.description} (threat {p.threat_level.value}, impact {p.total_impact})"
            for p in detected
        ]

        with self._lock:
            known = [
                copy.deepcopy(p)
                for p in self._memory.patterns.values()
                if p.counterparty == counterparty and p.is_active
            ]
            score = self._memory.resilience_score

        return ImmuneContext(
            counterparty=counterparty,
            recipient_history=recipient_history,
            detected_patterns=[p.pattern_type for p in detected],
            memory_references=references,
            resilience_score=score,
            resilience_status=ResilienceStatus.for_score(score),
            known_patterns=known,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_transaction(self, transaction: Any) -> TransactionRecord:
        """Return the ledger's copy of ``transaction`` or reject it."""
        if not isinstance(transaction, TransactionRecord):
            logger.warning("Rejected non-TransactionRecord input: %s", type(transaction).__name__)
            raise InvalidTransactionError(
                f"Expected TransactionRecord, got {type(transaction).__name__}"
            )
        recorded = self.ledger.get(transaction.id)
        if recorded is None:
            logger.warning("Rejected transaction %s: not in ledger", transaction.id)
            raise InvalidTransactionError(
                f"Transaction {transaction.id} is not in the ledger",
                field="id",
                details={"transaction_id": transaction.id},
            )
        if (recorded.counterparty, recorded.amount) != (transaction.counterparty, transaction.amount):
            logger.warning("Rejected transaction %s: differs from ledger record", transaction.id)
            raise InvalidTransactionError(
                f"Transaction {transaction.id} does not match the ledger record",
                details={"transaction_id": transaction.id},
            )
        return recorded

    def _existing(self, key: PatternKey) -> Optional[EconomicPattern]:
        pattern_id = self._pattern_index.get(key)
        return self._memory.patterns.get(pattern_id) if pattern_id else None

    def _stage_decision_pattern(
        self,
        pattern_type: PatternType,
        tx: TransactionRecord,
        threat_level: ThreatLevel,
    ) -> Tuple[EconomicPattern, bool]:
        occurrence = PatternOccurrence(
            transaction_id=tx.id,
            timestamp=tx.timestamp,
            severity=threat_level.severity,
            context=tx.purpose or "No context",
        )
        existing = self._existing((pattern_type, tx.counterparty))
        if existing is None:
            pattern = EconomicPattern(
                pattern_type=pattern_type,
                counterparty=tx.counterparty,
                description=f"{pattern_type.value} detected for {tx.counterparty}",
                threat_level=threat_level,
                total_impact=Decimal("0"),
                occurrences=[occurrence],
                learning_confidence=self.settings.new_pattern_confidence,
            )
        else:
            pattern = copy.deepcopy(existing)
            pattern.occurrences.append(occurrence)
            pattern.threat_level = threat_level
        pattern.total_impact = self._referenced_spend(pattern)
        return pattern, existing is None

    def _merge_detected(self, detected: EconomicPattern) -> EconomicPattern:
        existing = self._existing(detected.key)
        if existing is None:
            merged = detected
        else:
            merged = copy.deepcopy(existing)
            seen = set(merged.transaction_ids)
            for occurrence in detected.occurrences:
                if occurrence.transaction_id not in seen:
                    merged.occurrences.append(occurrence)
                    seen.add(occurrence.transaction_id)
            merged.threat_level = detected.threat_level
            merged.total_impact = detected.total_impact
            merged.description = detected.description
            logger.debug("Merged %s into pattern %s", detected.pattern_type.value, merged.id)
        self._check_occurrences(merged)
        return merged

    def _referenced_spend(self, pattern: EconomicPattern) -> Decimal:
        """Sum of the distinct ledger transactions a pattern's occurrences reference."""
        self._check_occurrences(pattern)
        total = Decimal("0")
        for tx_id in dict.fromkeys(pattern.transaction_ids):
            total += self.ledger.get(tx_id).amount
        return total

    def _check_occurrences(self, pattern: EconomicPattern) -> None:
        for tx_id in pattern.transaction_ids:
            if not self.ledger.contains(tx_id):
                raise_invariant_violation(
                    "occurrence_in_ledger",
                    f"Pattern {pattern.id} references unknown transaction {tx_id}",
                    pattern_id=pattern.id,
                    transaction_id=tx_id,
                )

    def _commit_pattern(self, pattern: EconomicPattern) -> None:
        self._memory.patterns[pattern.id] = pattern
        self._pattern_index[pattern.key] = pattern.id

    def _build_signal(self, tx: TransactionRecord, decision: ImmuneDecision) -> RiskSignal:
        level = decision.threat_level.value
        if decision.explanation:
            description = f"{level} threat detected: {decision.explanation}"
        else:
            description = f"{level} threat detected for payment to {tx.counterparty}"
        return RiskSignal(
            severity=decision.threat_level,
            description=description,
            related_transactions=[tx.id],
            pattern_type=decision.patterns_detected[0] if decision.patterns_detected else None,
        )
