"""Accrual engine - estimates and reconciles accrual of recurring payment agreements."""

__version__ = "0.1.0"

from accrual_engine.accrual import (
    SECONDS_IN_YEAR,
    annuity_due,
    interest_accrual,
    interest_accrual_rounded,
    linear_accrual,
    linear_accrual_rounded,
)
from accrual_engine.clock import SystemClock, VirtualClock
from accrual_engine.config import configure_logging, get_settings
from accrual_engine.engine import AccrualEngine
from accrual_engine.ledger import (
    ContractRevertError,
    HTTPLedgerClient,
    LedgerClient,
    LedgerError,
    StaticWallet,
    SubscriptionContract,
    TokenAllowance,
)
from accrual_engine.loader import LoadFailure, SubscriptionListLoader
from accrual_engine.models import AccrualSnapshot, Agreement, ValidationError
from accrual_engine.poller import ReconciliationFailure, ReconciliationPoller
from accrual_engine.scheduler import RecurringTask, TickScheduler
from accrual_engine.store import SnapshotStore
from accrual_engine.submission import AgreementSubmitter, SubmissionError
from accrual_engine.timeutils import seconds_since, to_display_amount

__all__ = [
    # Version
    "__version__",
    # Calculator
    "SECONDS_IN_YEAR",
    "annuity_due",
    "interest_accrual",
    "interest_accrual_rounded",
    "linear_accrual",
    "linear_accrual_rounded",
    # Time & formatting
    "seconds_since",
    "to_display_amount",
    # Models & store
    "Agreement",
    "AccrualSnapshot",
    "ValidationError",
    "SnapshotStore",
    # Scheduling
    "RecurringTask",
    "TickScheduler",
    "SystemClock",
    "VirtualClock",
    # Engine
    "AccrualEngine",
    "ReconciliationPoller",
    "ReconciliationFailure",
    "SubscriptionListLoader",
    "LoadFailure",
    "AgreementSubmitter",
    "SubmissionError",
    # Ledger
    "LedgerClient",
    "HTTPLedgerClient",
    "LedgerError",
    "ContractRevertError",
    "SubscriptionContract",
    "StaticWallet",
    "TokenAllowance",
    # Config
    "get_settings",
    "configure_logging",
]
