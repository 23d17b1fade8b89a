"""Resilience score controller.

A single bounded state variable, moved only by explicit deltas from the
reasoning component. No decay and no automatic recovery.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Optional, Union

from .exceptions import InvalidDecisionError, raise_invariant_violation
from .models import ResilienceSnapshot

logger = logging.getLogger(__name__)

SCORE_MIN = Decimal("0")
SCORE_MAX = Decimal("100")


class ResilienceStatus(str, Enum):
    """Display band derived from the score; never persisted."""

    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"

    @classmethod
    def for_score(cls, score: Union[int, float, Decimal]) -> "ResilienceStatus":
        if score >= 80:
            return cls.EXCELLENT
        if score >= 60:
            return cls.GOOD
        if score >= 40:
            return cls.FAIR
        return cls.POOR


class ResilienceTrend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


def clamp_score(value: Decimal) -> Decimal:
    return max(SCORE_MIN, min(SCORE_MAX, value))


def _to_delta(delta: Union[int, float, Decimal]) -> Decimal:
    if isinstance(delta, bool) or not isinstance(delta, (int, float, Decimal)):
        raise InvalidDecisionError(
            f"Resilience delta must be numeric, got {type(delta).__name__}",
            field="resilience_impact",
        )
    if isinstance(delta, float):
        if not math.isfinite(delta):
            raise InvalidDecisionError("Resilience delta must be finite", field="resilience_impact")
        return Decimal(str(delta))
    value = Decimal(delta)
    if not value.is_finite():
        raise InvalidDecisionError("Resilience delta must be finite", field="resilience_impact")
    return value


class ResilienceScoreController:
    """
    Clamped [0, 100] resilience score.

    Deltas are applied exactly and clamped regardless of magnitude; the
    public score is the value rounded half-up to an integer.

    Usage:
        controller = ResilienceScoreController(initial=75)
        controller.apply(-4.5)
        controller.score   # 71
        controller.status  # ResilienceStatus.GOOD
    """

    def __init__(self, initial: int = 75, history_limit: int = 100):
        self._value = clamp_score(Decimal(initial))
        self.history_limit = history_limit
        self._history: List[ResilienceSnapshot] = []

    @property
    def value(self) -> Decimal:
        return self._value

    @property
    def score(self) -> int:
        return int(self._value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @property
    def status(self) -> ResilienceStatus:
        return ResilienceStatus.for_score(self.score)

    @property
    def history(self) -> List[ResilienceSnapshot]:
        return list(self._history)

    def preview(self, delta: Union[int, float, Decimal]) -> Decimal:
        """Value the score would take after ``delta``, without applying it."""
        return clamp_score(self._value + _to_delta(delta))

    def apply(
        self,
        delta: Union[int, float, Decimal],
        at: Optional[datetime] = None,
    ) -> int:
        """Apply ``delta`` and return the new public score."""
        step = _to_delta(delta)
        new_value = clamp_score(self._value + step)
        if not SCORE_MIN <= new_value <= SCORE_MAX:
            raise_invariant_violation(
                "resilience_score_bounds",
                f"Resilience score {new_value} outside [0, 100] after clamping",
                value=str(new_value),
            )
        previous = self.score
        self._value = new_value
        self._history.append(
            ResilienceSnapshot(
                timestamp=at or datetime.now(timezone.utc),
                score=self.score,
                delta=step,
            )
        )
        if len(self._history) > self.history_limit:
            del self._history[: len(self._history) - self.history_limit]
        if self.score != previous:
            logger.info("Resilience score %d -> %d (delta %s)", previous, self.score, step)
        return self.score

    def trend(self) -> ResilienceTrend:
        """Direction of the score across the retained history."""
        if len(self._history) < 2:
            return ResilienceTrend.STABLE
        first = self._history[0].score
        last = self._history[-1].score
        if last > first:
            return ResilienceTrend.IMPROVING
        if last < first:
            return ResilienceTrend.DECLINING
        return ResilienceTrend.STABLE
