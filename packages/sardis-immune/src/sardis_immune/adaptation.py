"""Sensitivity adaptation from outcome feedback.

Learning confidence is a policy knob, not a calibrated probability: each
confirmed detection nudges it up by a fixed step, each miss nudges it down,
within [floor, ceiling].
"""
from __future__ import annotations

import logging
from typing import Iterable, Sequence, Union

from .config import DEFAULT_SETTINGS, ImmuneSettings
from .exceptions import ImmuneValidationError
from .models import (
    AdaptationEvent,
    AdaptationOutcome,
    AdjustmentDirection,
    EconomicPattern,
    PatternType,
)

logger = logging.getLogger(__name__)

_REASONS = {
    AdaptationOutcome.SUCCESS: "Pattern detection was accurate",
    AdaptationOutcome.FAILURE: "Pattern detection needs improvement",
}


class SensitivityAdapter:
    """Tunes per-pattern learning confidence from success/failure feedback."""

    def __init__(self, settings: ImmuneSettings = DEFAULT_SETTINGS):
        self.settings = settings

    @staticmethod
    def parse_outcome(outcome: Union[AdaptationOutcome, str]) -> AdaptationOutcome:
        try:
            parsed = AdaptationOutcome(outcome)
        except ValueError as e:
            raise ImmuneValidationError(f"Unknown outcome: {outcome!r}", field="outcome") from e
        if parsed is AdaptationOutcome.PENDING:
            raise ImmuneValidationError(
                "Outcome feedback must be success or failure", field="outcome"
            )
        return parsed

    def adapt(
        self,
        patterns: Iterable[EconomicPattern],
        pattern_type: PatternType,
        outcome: AdaptationOutcome,
    ) -> AdaptationEvent:
        """
        Adjust confidence of every pattern of ``pattern_type`` in place.

        Returns:
            The AdaptationEvent to append to the audit trail
        """
        step = self.settings.confidence_step
        touched = 0
        for pattern in patterns:
            if pattern.pattern_type != pattern_type:
                continue
            if outcome is AdaptationOutcome.SUCCESS:
                confidence = min(self.settings.confidence_ceiling, pattern.learning_confidence + step)
            else:
                confidence = max(self.settings.confidence_floor, pattern.learning_confidence - step)
            # Float steps drift (0.5 + 0.1 * 3 != 0.8); keep a clean scalar.
            pattern.learning_confidence = round(confidence, 10)
            touched += 1

        adjustment = (
            AdjustmentDirection.MAINTAIN
            if outcome is AdaptationOutcome.SUCCESS
            else AdjustmentDirection.INCREASE
        )
        logger.info(
            "Sensitivity %s for %s after %s (%d patterns)",
            adjustment.value,
            pattern_type.value,
            outcome.value,
            touched,
        )
        return AdaptationEvent(
            pattern_type=pattern_type,
            adjustment=adjustment,
            reason=_REASONS[outcome],
            outcome=outcome,
        )


def adaptation_rate(events: Sequence[AdaptationEvent]) -> float:
    """Share of successful outcomes; 0.5 when there is no feedback yet."""
    if not events:
        return 0.5
    return sum(1 for e in events if e.outcome is AdaptationOutcome.SUCCESS) / len(events)
