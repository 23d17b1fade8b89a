"""
Pytest configuration for sardis-immune tests.
"""
from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

from sardis_immune.ledger import TransactionLedger  # noqa: E402
from sardis_immune.models import TransactionRecord, TransactionStatus  # noqa: E402
from sardis_immune.store import ImmuneMemoryStore  # noqa: E402

BASE_TIME = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_tx(
    counterparty: str,
    amount,
    purpose: str | None = None,
    days: float = 0,
    status: TransactionStatus = TransactionStatus.COMPLETED,
    tx_id: str | None = None,
) -> TransactionRecord:
    """Build a transaction ``days`` after BASE_TIME."""
    return TransactionRecord(
        id=tx_id or f"tx_{counterparty}_{days}_{amount}",
        timestamp=BASE_TIME + timedelta(days=days),
        counterparty=counterparty,
        amount=Decimal(str(amount)),
        purpose=purpose,
        status=status,
    )


@pytest.fixture
def tx_factory():
    return make_tx


@pytest.fixture
def ledger():
    return TransactionLedger()


@pytest.fixture
def store(ledger):
    return ImmuneMemoryStore(ledger, agent_id="agent_1234567890abcdef", wallet_id="wallet_1234567890abcdef")


@pytest.fixture
def low_decision():
    return {
        "recommendation": "approve",
        "threat_level": "LOW",
        "patterns_detected": [],
        "resilience_impact": 0,
    }
