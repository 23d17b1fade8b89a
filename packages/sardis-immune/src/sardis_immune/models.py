"""Immune memory data models."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import InvalidTransactionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    """Generate a prefixed identifier, e.g. ``pat_3f9c...``."""
    return f"{prefix}_{uuid.uuid4().hex[:20]}"


def to_amount(value: Any) -> Decimal:
    """Convert a numeric value to Decimal without float artifacts."""
    if isinstance(value, bool):
        raise InvalidTransactionError(f"Amount must be numeric, got {value!r}", field="amount")
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(str(value))
        elif isinstance(value, (int, str)):
            amount = Decimal(value)
        else:
            raise InvalidTransactionError(
                f"Cannot convert {type(value).__name__} to an amount", field="amount"
            )
    except InvalidOperation as e:
        raise InvalidTransactionError(f"Invalid amount: {value!r}", field="amount") from e
    if not amount.is_finite():
        raise InvalidTransactionError(f"Amount must be finite: {value!r}", field="amount")
    return amount


class TransactionStatus(str, Enum):
    """Lifecycle of a ledger record: pending -> confirming -> completed | failed."""

    PENDING = "pending"
    CONFIRMING = "confirming"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_final(self) -> bool:
        return self in (TransactionStatus.COMPLETED, TransactionStatus.FAILED)

    @property
    def bears_spend(self) -> bool:
        """Failed payments never moved funds and are ignored by the analyzers."""
        return self is not TransactionStatus.FAILED


_ALLOWED_STATUS_MOVES = {
    TransactionStatus.PENDING: {
        TransactionStatus.CONFIRMING,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
    },
    TransactionStatus.CONFIRMING: {TransactionStatus.COMPLETED, TransactionStatus.FAILED},
    TransactionStatus.COMPLETED: set(),
    TransactionStatus.FAILED: set(),
}


class PatternType(str, Enum):
    """Economic pattern labels shared with the reasoning component."""

    RECURRING_MICRO_COSTS = "recurring_micro_costs"
    VENDOR_CONCENTRATION = "vendor_concentration"
    CONVENIENCE_BIAS = "convenience_bias"
    DECLINING_VALUE = "declining_value"
    # Emitted by the reasoning component only; no detector produces these.
    BUDGET_CREEP = "budget_creep"
    IMPULSE_CLUSTERING = "impulse_clustering"


class ThreatLevel(str, Enum):
    """Qualitative threat level, shared by patterns, signals and decisions."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def severity(self) -> float:
        """Occurrence severity recorded for a decision at this level."""
        return _THREAT_SEVERITY[self]

    @property
    def raises_signal(self) -> bool:
        return self in (ThreatLevel.HIGH, ThreatLevel.CRITICAL)


_THREAT_SEVERITY = {
    ThreatLevel.CRITICAL: 1.0,
    ThreatLevel.HIGH: 0.8,
    ThreatLevel.MEDIUM: 0.6,
    ThreatLevel.LOW: 0.4,
}


class CadencePattern(str, Enum):
    """Timing/amount shape of a counterparty's history."""

    REGULAR = "regular"
    SPORADIC = "sporadic"
    INCREASING = "increasing"
    DECREASING = "decreasing"


class AdjustmentDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    MAINTAIN = "maintain"


class AdaptationOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


@dataclass(frozen=True)
class TransactionRecord:
    """Read-only view of a ledger transaction.

    Owned by the payment layer; the engine never mutates it. Status moves
    go through TransactionLedger.update_status, which stores a new record.
    """

    id: str
    timestamp: datetime
    counterparty: str
    amount: Decimal
    purpose: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidTransactionError("Transaction id is required", field="id")
        if not self.counterparty:
            raise InvalidTransactionError("Counterparty is required", field="counterparty")
        if not isinstance(self.timestamp, datetime):
            raise InvalidTransactionError("Timestamp must be a datetime", field="timestamp")
        # frozen dataclass: normalise through object.__setattr__
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))
        amount = to_amount(self.amount)
        if amount < 0:
            raise InvalidTransactionError(
                f"Amount cannot be negative: {amount}",
                field="amount",
                details={"transaction_id": self.id},
            )
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "status", TransactionStatus(self.status))

    @classmethod
    def create(
        cls,
        counterparty: str,
        amount: Any,
        purpose: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.PENDING,
        timestamp: Optional[datetime] = None,
    ) -> "TransactionRecord":
        return cls(
            id=generate_id("tx"),
            timestamp=timestamp or _utcnow(),
            counterparty=counterparty,
            amount=amount,
            purpose=purpose,
            status=status,
        )

    def can_move_to(self, status: TransactionStatus) -> bool:
        return status in _ALLOWED_STATUS_MOVES[self.status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "counterparty": self.counterparty,
            "amount": str(self.amount),
            "purpose": self.purpose,
            "status": self.status.value,
        }


@dataclass
class RiskAssessment:
    """Per-counterparty risk vector, each component in [0, 1]."""

    concentration_risk: float = 0.0
    convenience_bias: float = 0.0
    value_decline: float = 0.0

    @property
    def overall_risk(self) -> float:
        return max(self.concentration_risk, self.convenience_bias, self.value_decline)

    def to_dict(self) -> Dict[str, float]:
        return {
            "concentration_risk": self.concentration_risk,
            "convenience_bias": self.convenience_bias,
            "value_decline": self.value_decline,
            "overall_risk": self.overall_risk,
        }


@dataclass
class RecipientProfile:
    """Statistical summary of everything paid to one counterparty."""

    counterparty: str
    transaction_count: int
    total_amount: Decimal
    average_amount: Decimal
    purposes: Dict[str, int]
    cadence: CadencePattern
    risk: RiskAssessment
    last_interaction: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counterparty": self.counterparty,
            "transaction_count": self.transaction_count,
            "total_amount": str(self.total_amount),
            "average_amount": str(self.average_amount),
            "purposes": dict(self.purposes),
            "cadence": self.cadence.value,
            "risk": self.risk.to_dict(),
            "last_interaction": self.last_interaction.isoformat(),
        }


@dataclass
class PatternOccurrence:
    transaction_id: str
    timestamp: datetime
    severity: float
    context: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity,
            "context": self.context,
        }


@dataclass
class EconomicPattern:
    """A recurring behaviour detected for one counterparty.

    The id is informational; (pattern_type, counterparty) is the identity
    the memory store merges on. Occurrences are append-only.
    """

    pattern_type: PatternType
    counterparty: str
    description: str
    threat_level: ThreatLevel
    total_impact: Decimal
    occurrences: List[PatternOccurrence] = field(default_factory=list)
    learning_confidence: float = 0.5
    is_active: bool = True
    id: str = field(default_factory=lambda: generate_id("pat"))
    detected_at: datetime = field(default_factory=_utcnow)

    @property
    def key(self) -> tuple[PatternType, str]:
        return (self.pattern_type, self.counterparty)

    @property
    def transaction_ids(self) -> List[str]:
        return [o.transaction_id for o in self.occurrences]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.pattern_type.value,
            "counterparty": self.counterparty,
            "description": self.description,
            "detected_at": self.detected_at.isoformat(),
            "occurrences": [o.to_dict() for o in self.occurrences],
            "threat_level": self.threat_level.value,
            "is_active": self.is_active,
            "learning_confidence": self.learning_confidence,
            "total_impact": str(self.total_impact),
        }


@dataclass
class RiskSignal:
    """Operator-facing notification raised for HIGH/CRITICAL decisions."""

    severity: ThreatLevel
    description: str
    related_transactions: List[str]
    pattern_type: Optional[PatternType] = None
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: generate_id("sig"))
    detected_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.pattern_type.value if self.pattern_type else None,
            "severity": self.severity.value,
            "description": self.description,
            "detected_at": self.detected_at.isoformat(),
            "related_transactions": list(self.related_transactions),
            "is_resolved": self.is_resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass
class AdaptationEvent:
    """Audit entry for one sensitivity adjustment."""

    pattern_type: PatternType
    adjustment: AdjustmentDirection
    reason: str
    outcome: AdaptationOutcome
    id: str = field(default_factory=lambda: generate_id("adapt"))
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "pattern_type": self.pattern_type.value,
            "adjustment": self.adjustment.value,
            "reason": self.reason,
            "outcome": self.outcome.value,
        }


@dataclass
class ResilienceSnapshot:
    timestamp: datetime
    score: int
    delta: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "score": self.score,
            "delta": str(self.delta),
        }


@dataclass
class ImmuneMemory:
    """Aggregate root: the whole inspectable state of one agent's immune memory."""

    resilience_score: int = 75
    patterns: Dict[str, EconomicPattern] = field(default_factory=dict)
    recipients: Dict[str, RecipientProfile] = field(default_factory=dict)
    signals: List[RiskSignal] = field(default_factory=list)
    adaptations: List[AdaptationEvent] = field(default_factory=list)
    resilience_history: List[ResilienceSnapshot] = field(default_factory=list)
    last_updated: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resilience_score": self.resilience_score,
            "patterns": [p.to_dict() for p in self.patterns.values()],
            "recipients": [r.to_dict() for r in self.recipients.values()],
            "signals": [s.to_dict() for s in self.signals],
            "adaptations": [a.to_dict() for a in self.adaptations],
            "resilience_history": [h.to_dict() for h in self.resilience_history],
            "last_updated": self.last_updated.isoformat(),
        }
