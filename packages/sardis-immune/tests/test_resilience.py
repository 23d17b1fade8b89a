"""Tests for the resilience score controller."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from sardis_immune.exceptions import InvalidDecisionError
from sardis_immune.resilience import (
    ResilienceScoreController,
    ResilienceStatus,
    ResilienceTrend,
)


class TestResilienceStatus:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (100, ResilienceStatus.EXCELLENT),
            (80, ResilienceStatus.EXCELLENT),
            (79, ResilienceStatus.GOOD),
            (60, ResilienceStatus.GOOD),
            (59, ResilienceStatus.FAIR),
            (40, ResilienceStatus.FAIR),
            (39, ResilienceStatus.POOR),
            (0, ResilienceStatus.POOR),
        ],
    )
    def test_bands(self, score, expected):
        assert ResilienceStatus.for_score(score) == expected


class TestResilienceScoreController:
    """Clamping, rounding, history and trend."""

    def test_initial(self):
        controller = ResilienceScoreController()
        assert controller.score == 75
        assert controller.status == ResilienceStatus.GOOD
        assert controller.history == []

    def test_clamped_at_both_ends(self):
        controller = ResilienceScoreController(initial=95)
        assert controller.apply(10) == 100
        assert controller.apply(-1000) == 0
        assert controller.apply(-1) == 0

    def test_fractional_deltas_accumulate(self):
        controller = ResilienceScoreController()

        assert controller.apply(0.4) == 75
        assert controller.apply(0.4) == 76
        assert controller.value == Decimal("75.8")

    def test_half_rounds_up(self):
        controller = ResilienceScoreController()
        assert controller.apply(-4.5) == 71

    def test_preview_does_not_apply(self):
        controller = ResilienceScoreController()
        assert controller.preview(-80) == Decimal("0")
        assert controller.score == 75
        assert controller.history == []

    @pytest.mark.parametrize("delta", [float("inf"), float("nan"), "5", None, True])
    def test_rejects_bad_delta(self, delta):
        controller = ResilienceScoreController()
        with pytest.raises(InvalidDecisionError):
            controller.apply(delta)
        assert controller.score == 75

    def test_history_bounded(self):
        controller = ResilienceScoreController(history_limit=3)
        for _ in range(5):
            controller.apply(-1)

        history = controller.history
        assert len(history) == 3
        assert [s.score for s in history] == [72, 71, 70]
        assert history[-1].delta == Decimal("-1")

    def test_snapshot_timestamp(self):
        controller = ResilienceScoreController()
        at = datetime(2026, 3, 1, tzinfo=timezone.utc)
        controller.apply(1, at=at)
        assert controller.history[0].timestamp == at

    def test_trend(self):
        controller = ResilienceScoreController()
        assert controller.trend() == ResilienceTrend.STABLE

        controller.apply(-5)
        controller.apply(-5)
        assert controller.trend() == ResilienceTrend.DECLINING

        start = datetime(2026, 3, 1, tzinfo=timezone.utc)
        for i in range(3):
            controller.apply(10, at=start + timedelta(hours=i))
        assert controller.trend() == ResilienceTrend.IMPROVING

    def test_flat_history_is_stable(self):
        controller = ResilienceScoreController(initial=100)
        controller.apply(5)
        controller.apply(5)
        assert controller.trend() == ResilienceTrend.STABLE
