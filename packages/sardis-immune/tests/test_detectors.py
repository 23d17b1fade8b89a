"""Unit tests for the economic pattern detectors."""
from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_tx
from sardis_immune.config import ImmuneSettings
from sardis_immune.detectors import (
    detect_convenience_bias,
    detect_declining_value,
    detect_patterns,
    detect_recurring_micro_costs,
    detect_vendor_concentration,
)
from sardis_immune.models import PatternType, ThreatLevel, TransactionStatus


class TestRecurringMicroCosts:
    """Small payments that add up."""

    def test_amount_at_threshold_never_fires(self):
        prior = [make_tx("0xcoffee", "10", days=i) for i in range(3)]
        new = make_tx("0xcoffee", "50", days=4)

        assert detect_recurring_micro_costs(new, prior + [new]) is None

    def test_just_below_threshold_with_three_prior_fires(self):
        prior = [make_tx("0xcoffee", "10", days=i) for i in range(3)]
        new = make_tx("0xcoffee", "49.99", days=4)

        pattern = detect_recurring_micro_costs(new, prior + [new])

        assert pattern is not None
        assert pattern.pattern_type == PatternType.RECURRING_MICRO_COSTS
        assert pattern.counterparty == "0xcoffee"
        assert pattern.total_impact == Decimal("79.99")
        assert len(pattern.occurrences) == 4

    def test_new_transaction_counted_even_before_ledger_append(self):
        prior = [make_tx("0xcoffee", "10", days=i) for i in range(2)]
        new = make_tx("0xcoffee", "10", days=3)

        assert detect_recurring_micro_costs(new, prior) is not None
        assert detect_recurring_micro_costs(new, prior[:1]) is None

    def test_coffee_subscription_escalates_by_threshold_not_frequency(self):
        txs = [make_tx("0xcoffee", "15", "coffee", days=10 * i) for i in range(4)]

        assert detect_recurring_micro_costs(txs[1], txs[:2]) is None

        third = detect_recurring_micro_costs(txs[2], txs[:3])
        assert third.total_impact == Decimal("45")
        assert third.threat_level == ThreatLevel.LOW

        fourth = detect_recurring_micro_costs(txs[3], txs)
        assert fourth.total_impact == Decimal("60")
        assert fourth.threat_level == ThreatLevel.LOW

    @pytest.mark.parametrize(
        "amount,count,expected",
        [
            ("40", 3, ThreatLevel.MEDIUM),  # 120
            ("40", 6, ThreatLevel.HIGH),  # 240
            ("25", 4, ThreatLevel.LOW),  # exactly 100
        ],
    )
    def test_threat_level_from_cumulative_total(self, amount, count, expected):
        txs = [make_tx("0xvendor", amount, days=i) for i in range(count)]
        assert detect_recurring_micro_costs(txs[-1], txs).threat_level == expected

    def test_other_counterparties_and_large_payments_ignored(self):
        txs = [
            make_tx("0xvendor", "10", days=0),
            make_tx("0xvendor", "80", days=1),
            make_tx("0xother", "10", days=2),
            make_tx("0xvendor", "10", days=3),
        ]
        assert detect_recurring_micro_costs(txs[-1], txs) is None

    def test_occurrence_severity_normalized(self):
        txs = [make_tx("0xcoffee", "15", days=i) for i in range(3)]
        pattern = detect_recurring_micro_costs(txs[-1], txs)
        assert all(o.severity == pytest.approx(0.3) for o in pattern.occurrences)
        assert pattern.learning_confidence == 0.7

    def test_custom_threshold(self):
        settings = ImmuneSettings(_env_file=None, micro_cost_threshold=Decimal("12"))
        txs = [make_tx("0xcoffee", "15", days=i) for i in range(3)]
        assert detect_recurring_micro_costs(txs[-1], txs, settings) is None


class TestVendorConcentration:
    """Share of total spend held by one counterparty."""

    def test_exactly_thirty_percent_does_not_fire(self):
        txs = [make_tx("0xa", "30", days=0), make_tx("0xb", "70", days=1)]
        assert detect_vendor_concentration(txs[0], txs) is None

    def test_just_above_thirty_percent_fires(self):
        txs = [make_tx("0xa", "3001", days=0), make_tx("0xb", "6999", days=1)]

        pattern = detect_vendor_concentration(txs[0], txs)

        assert pattern is not None
        assert pattern.threat_level not in (ThreatLevel.HIGH, ThreatLevel.CRITICAL)
        assert pattern.threat_level == ThreatLevel.LOW
        assert pattern.total_impact == Decimal("3001")
        assert pattern.occurrences[0].transaction_id == txs[0].id
        assert pattern.occurrences[0].severity == pytest.approx(0.3001)

    @pytest.mark.parametrize(
        "share,expected",
        [
            (35, ThreatLevel.LOW),
            (41, ThreatLevel.MEDIUM),
            (60, ThreatLevel.MEDIUM),
            (61, ThreatLevel.HIGH),
            (100, ThreatLevel.HIGH),
        ],
    )
    def test_threat_bands(self, share, expected):
        txs = [make_tx("0xa", share, days=0)]
        if share < 100:
            txs.append(make_tx("0xb", 100 - share, days=1))
        assert detect_vendor_concentration(txs[0], txs).threat_level == expected

    def test_failed_transactions_excluded_from_spend(self):
        txs = [
            make_tx("0xa", "20", days=0),
            make_tx("0xb", "80", days=1),
            make_tx("0xb", "1000", days=2, status=TransactionStatus.FAILED),
        ]
        assert detect_vendor_concentration(txs[1], txs).total_impact == Decimal("80")

    def test_zero_spend_never_fires(self):
        tx = make_tx("0xa", "0")
        assert detect_vendor_concentration(tx, [tx]) is None


class TestConvenienceBias:
    """Clustering on round, large amounts."""

    def test_non_round_or_small_amounts_never_fire(self):
        txs = [make_tx("0xa", "100", days=i) for i in range(5)]
        assert detect_convenience_bias(make_tx("0xa", "55", days=9), txs) is None
        assert detect_convenience_bias(make_tx("0xa", "50", days=9), txs) is None

    def test_fires_at_sixty_percent_round_share(self):
        txs = [
            make_tx("0xa", "60", days=0),
            make_tx("0xb", "70", days=1),
            make_tx("0xc", "15", days=2),
            make_tx("0xd", "12", days=3),
            make_tx("0xa", "100", days=4),
        ]

        pattern = detect_convenience_bias(txs[-1], txs)

        assert pattern is not None
        assert pattern.threat_level == ThreatLevel.LOW
        assert pattern.occurrences[0].severity == pytest.approx(0.6)
        assert pattern.total_impact == Decimal("23")

    def test_below_sixty_percent_does_not_fire(self):
        txs = [
            make_tx("0xa", "60", days=0),
            make_tx("0xc", "15", days=1),
            make_tx("0xd", "12", days=2),
            make_tx("0xa", "100", days=3),
        ]
        assert detect_convenience_bias(txs[-1], txs) is None

    def test_medium_above_eighty_percent(self):
        txs = [make_tx("0xa", 60 + 10 * i, days=i) for i in range(7)]
        pattern = detect_convenience_bias(txs[-1], txs)

        assert pattern.threat_level == ThreatLevel.MEDIUM
        assert len(pattern.occurrences) == 5
        assert pattern.occurrences[-1].transaction_id == txs[-1].id


class TestDecliningValue:
    """Rising payments to the same counterparty."""

    def test_needs_four_transactions(self):
        txs = [make_tx("0xa", amount, days=i) for i, amount in enumerate([10, 10, 50])]
        assert detect_declining_value(txs[-1], txs) is None

    def test_twenty_percent_increase_is_not_enough(self):
        txs = [make_tx("0xa", amount, days=i) for i, amount in enumerate([10, 10, 12, 12])]
        assert detect_declining_value(txs[-1], txs) is None

    def test_medium_increase(self):
        txs = [make_tx("0xa", amount, days=i) for i, amount in enumerate([10, 10, 13, 13])]

        pattern = detect_declining_value(txs[-1], txs)

        assert pattern.threat_level == ThreatLevel.MEDIUM
        assert pattern.total_impact == Decimal("3")
        assert [o.transaction_id for o in pattern.occurrences] == [tx.id for tx in txs[1:]]

    def test_high_increase(self):
        txs = [make_tx("0xa", amount, days=i) for i, amount in enumerate([10, 10, 14, 18, 20])]
        pattern = detect_declining_value(txs[-1], txs)

        assert pattern.threat_level == ThreatLevel.HIGH
        assert all(0 <= o.severity <= 1 for o in pattern.occurrences)

    def test_uses_time_order_not_list_order(self):
        txs = [make_tx("0xa", amount, days=i) for i, amount in enumerate([10, 10, 13, 13])]
        assert detect_declining_value(txs[-1], list(reversed(txs))) is not None


class TestDetectPatterns:
    """Running every detector at once."""

    def test_fresh_identifiers_each_run(self):
        txs = [make_tx("0xa", "15", days=i) for i in range(3)]

        first = detect_patterns(txs[-1], txs)
        second = detect_patterns(txs[-1], txs)

        assert {p.pattern_type for p in first} == {
            PatternType.RECURRING_MICRO_COSTS,
            PatternType.VENDOR_CONCENTRATION,
        }
        assert {p.id for p in first}.isdisjoint({p.id for p in second})

    def test_nothing_for_diverse_spend(self):
        txs = [make_tx(f"0x{i}", 55 + i, days=i) for i in range(5)]
        assert detect_patterns(txs[-1], txs) == []
