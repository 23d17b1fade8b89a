"""Sardis Immune - Economic pattern detection for agent wallets.

Maintains per-counterparty spending profiles, detects recurring
economically-harmful patterns, keeps a bounded resilience score, raises
risk signals and adapts detection confidence from outcome feedback.
"""

from sardis_immune.adaptation import SensitivityAdapter, adaptation_rate
from sardis_immune.config import ImmuneSettings, load_settings
from sardis_immune.decision import ImmuneDecision, Recommendation, parse_decision
from sardis_immune.detectors import (
    detect_convenience_bias,
    detect_declining_value,
    detect_patterns,
    detect_recurring_micro_costs,
    detect_vendor_concentration,
)
from sardis_immune.exceptions import (
    DuplicateTransactionError,
    ImmuneError,
    ImmuneStoreClosedError,
    ImmuneValidationError,
    InvalidDecisionError,
    InvalidTransactionError,
    InvariantViolationError,
    PatternNotFoundError,
    SignalNotFoundError,
    TransactionNotFoundError,
)
from sardis_immune.ledger import TransactionLedger
from sardis_immune.logging_config import LogContext, setup_logging
from sardis_immune.models import (
    AdaptationEvent,
    AdaptationOutcome,
    AdjustmentDirection,
    CadencePattern,
    EconomicPattern,
    ImmuneMemory,
    PatternOccurrence,
    PatternType,
    RecipientProfile,
    RiskAssessment,
    RiskSignal,
    ThreatLevel,
    TransactionRecord,
    TransactionStatus,
)
from sardis_immune.profiles import RecipientProfileBuilder
from sardis_immune.resilience import (
    ResilienceScoreController,
    ResilienceStatus,
    ResilienceTrend,
)
from sardis_immune.store import (
    ImmuneContext,
    ImmuneMemoryStore,
    ImmuneStatus,
    TransactionOutcome,
)

__version__ = "0.1.0"

__all__ = [
    # Store
    "ImmuneContext",
    "ImmuneMemoryStore",
    "ImmuneStatus",
    "TransactionOutcome",
    # Ledger
    "TransactionLedger",
    # Models
    "AdaptationEvent",
    "AdaptationOutcome",
    "AdjustmentDirection",
    "CadencePattern",
    "EconomicPattern",
    "ImmuneMemory",
    "PatternOccurrence",
    "PatternType",
    "RecipientProfile",
    "RiskAssessment",
    "RiskSignal",
    "ThreatLevel",
    "TransactionRecord",
    "TransactionStatus",
    # Decision contract
    "ImmuneDecision",
    "Recommendation",
    "parse_decision",
    # Analyzers
    "RecipientProfileBuilder",
    "detect_convenience_bias",
    "detect_declining_value",
    "detect_patterns",
    "detect_recurring_micro_costs",
    "detect_vendor_concentration",
    # Score and adaptation
    "ResilienceScoreController",
    "ResilienceStatus",
    "ResilienceTrend",
    "SensitivityAdapter",
    "adaptation_rate",
    # Config and logging
    "ImmuneSettings",
    "load_settings",
    "LogContext",
    "setup_logging",
    # Errors
    "DuplicateTransactionError",
    "ImmuneError",
    "ImmuneStoreClosedError",
    "ImmuneValidationError",
    "InvalidDecisionError",
    "InvalidTransactionError",
    "InvariantViolationError",
    "PatternNotFoundError",
    "SignalNotFoundError",
    "TransactionNotFoundError",
]
