"""Pytest configuration and fixtures."""

import os
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LEDGER_GATEWAY_URL", "http://ledger.test")
os.environ.setdefault("LEDGER_MAX_RETRIES", "0")

from accrual_engine.clock import VirtualClock  # noqa: E402
from accrual_engine.config import FlatSettings, get_settings  # noqa: E402
from accrual_engine.ledger import StaticWallet, SubscriptionContract  # noqa: E402
from accrual_engine.models import Agreement  # noqa: E402
from accrual_engine.scheduler import TickScheduler  # noqa: E402
from accrual_engine.store import SnapshotStore  # noqa: E402

# 2024-01-01T00:00:00Z
NOW = 1_704_067_200.0
PAYOR = "0x1111111111111111111111111111111111111111"
RECEIVER = "0x2222222222222222222222222222222222222222"
ANNUAL_100K = 100000 * 10**18


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Rebuild settings per test so env changes are picked up."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return FlatSettings()


@pytest.fixture
def clock():
    return VirtualClock(start=NOW)


@pytest.fixture
def scheduler(clock):
    return TickScheduler(clock=clock)


@pytest.fixture
def store():
    return SnapshotStore()


@pytest.fixture
def mock_ledger():
    """Mock ledger client with the LedgerClient surface."""
    client = AsyncMock()
    client.get_past_events = AsyncMock(return_value=[])
    client.call = AsyncMock()
    client.send = AsyncMock()
    return client


@pytest.fixture
def wallet():
    return StaticWallet(PAYOR)


@pytest.fixture
def contract(mock_ledger, wallet):
    return SubscriptionContract(mock_ledger, wallet)


@pytest.fixture
def agreement():
    """Agreement paying 100000 tokens a year that started at NOW."""
    return Agreement(
        agreement_id="1",
        payor=PAYOR,
        receiver=RECEIVER,
        annual_amount=ANNUAL_100K,
        start_date=int(NOW),
        interest_rate=0.04,
        description="QmHash",
    )


@pytest.fixture
def mock_agreement_events():
    """AddAgreement events as returned by the gateway."""
    return [
        {
            "event": "AddAgreement",
            "blockNumber": 3,
            "returnValues": {
                "agreementId": "1",
                "payor": PAYOR,
                "receiver": RECEIVER,
                "annualAmount": str(ANNUAL_100K),
                "startDate": str(int(NOW) - 3600),
                "description": "QmFirst",
            },
        },
        {
            "event": "AddAgreement",
            "blockNumber": 5,
            "returnValues": {
                "agreementId": "2",
                "payor": RECEIVER,
                "receiver": PAYOR,
                "annualAmount": str(5000 * 10**18),
                "startDate": str(int(NOW) - 86400),
                "description": "QmSecond",
            },
        },
    ]
