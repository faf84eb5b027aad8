"""Reconciliation poller: keeps each watched agreement's snapshot current.

Every watched agreement gets three recurring ticks:

1. principal tick - linear accrual since the start date (local, synchronous)
2. interest tick - continuously compounded accrual (local, synchronous)
3. reconcile tick - authoritative figures from the ledger (network, async)

The ticks run as separate tasks, so a slow or failing ledger never delays the
local estimate. Each tick writes only its own snapshot fields.
"""

import math
from datetime import UTC, datetime
from functools import partial

import structlog

from accrual_engine.accrual import interest_accrual_rounded, linear_accrual_rounded
from accrual_engine.config import FlatSettings, get_settings
from accrual_engine.ledger import SubscriptionContract
from accrual_engine.models import Agreement, ValidationError
from accrual_engine.scheduler import RecurringTask, TickScheduler
from accrual_engine.store import SnapshotStore
from accrual_engine.timeutils import seconds_since

logger = structlog.get_logger(__name__)


class ReconciliationFailure(Exception):
    """An authoritative query for an agreement failed."""

    def __init__(self, agreement_id: str, cause: BaseException):
        super().__init__(f"Reconciliation failed for {agreement_id}: {cause}")
        self.agreement_id = agreement_id
        self.cause = cause


class ReconciliationPoller:
    """Schedules local estimates and ledger reconciliation per agreement."""

    def __init__(
        self,
        contract: SubscriptionContract,
        store: SnapshotStore,
        scheduler: TickScheduler,
        settings: FlatSettings | None = None,
    ):
        self._contract = contract
        self._store = store
        self._scheduler = scheduler
        self._settings = settings or get_settings()
        self._agreements: dict[str, Agreement] = {}
        self._logger = logger.bind(component="reconciliation_poller")

    @property
    def watched(self) -> list[str]:
        """Ids of agreements currently being watched."""
        return list(self._agreements)

    def get_agreement(self, agreement_id: str) -> Agreement | None:
        """Terms of a watched agreement, with its start date resolved."""
        return self._agreements.get(agreement_id)

    def watch(self, agreement: Agreement) -> Agreement:
        """Start the tick group for an agreement.

        A start date of 0, or one ahead of the clock, is pinned to the current
        time. Watching an agreement twice keeps the first registration.

        Returns:
            The agreement as watched.

        Raises:
            ValidationError: If the terms are out of range.
        """
        existing = self._agreements.get(agreement.agreement_id)
        if existing is not None:
            return existing

        now = self._scheduler.clock.now()
        resolved = agreement.resolve_start(now)
        if agreement.start_date and resolved.start_date != agreement.start_date:
            self._logger.warning(
                "start_date_clamped",
                agreement_id=agreement.agreement_id,
                start_date=agreement.start_date,
                now=resolved.start_date,
            )
        resolved.validate(now)

        agreement_id = resolved.agreement_id
        self._agreements[agreement_id] = resolved
        self._store.upsert(agreement_id)
        self._scheduler.schedule_group(
            agreement_id,
            [
                RecurringTask(
                    "principal",
                    self._settings.principal_tick_seconds,
                    partial(self.tick_principal, resolved),
                ),
                RecurringTask(
                    "interest",
                    self._settings.interest_tick_seconds,
                    partial(self.tick_interest, resolved),
                ),
                RecurringTask(
                    "reconcile",
                    self._settings.reconcile_tick_seconds,
                    partial(self.reconcile, resolved),
                ),
            ],
        )
        self._logger.info(
            "agreement_watched",
            agreement_id=agreement_id,
            start_date=resolved.start_date,
            interest_rate=resolved.interest_rate,
        )
        return resolved

    async def unwatch(self, agreement_id: str) -> bool:
        """Cancel an agreement's ticks and discard its snapshot.

        Returns:
            True if the agreement was being watched.
        """
        if self._agreements.pop(agreement_id, None) is None:
            return False
        await self._scheduler.cancel_group(agreement_id)
        self._store.remove(agreement_id)
        self._logger.info("agreement_unwatched", agreement_id=agreement_id)
        return True

    async def stop(self) -> None:
        """Stop watching every agreement."""
        for agreement_id in list(self._agreements):
            await self.unwatch(agreement_id)

    def _elapsed(self, agreement: Agreement) -> float:
        elapsed = seconds_since(agreement.start_date, self._scheduler.clock.now())
        if math.isnan(elapsed) or elapsed < 0:
            raise ValidationError(f"Invalid elapsed time {elapsed} for {agreement.agreement_id}")
        return elapsed

    def tick_principal(self, agreement: Agreement) -> int:
        """Recompute the linear accrual estimate."""
        try:
            accrued = linear_accrual_rounded(agreement.annual_amount, self._elapsed(agreement))
        except Exception:
            self._logger.exception("principal_tick_failed", agreement_id=agreement.agreement_id)
            raise
        self._store.upsert(agreement.agreement_id, principal_accrued=accrued)
        return accrued

    def tick_interest(self, agreement: Agreement) -> int:
        """Recompute the compounded accrual estimate."""
        try:
            accrued = interest_accrual_rounded(
                agreement.annual_amount,
                self._elapsed(agreement),
                agreement.interest_rate,
            )
        except Exception:
            self._logger.exception("interest_tick_failed", agreement_id=agreement.agreement_id)
            raise
        self._store.upsert(agreement.agreement_id, interest_accrued=accrued)
        return accrued

    async def reconcile(self, agreement: Agreement) -> bool:
        """Fetch authoritative figures and merge them into the snapshot.

        On failure the previous authoritative values are kept and the failure
        is recorded on the snapshot; nothing is raised.

        Returns:
            True if the snapshot was updated from the ledger.
        """
        agreement_id = agreement.agreement_id
        try:
            if self._settings.reconcile_mode == "total":
                owed = await self._contract.get_total_owed(agreement_id)
                interest = None
            else:
                snapshot = self._store.get(agreement_id)
                principal = snapshot.principal_accrued if snapshot else 0
                amount = await self._contract.get_amount_owed(agreement_id)
                interest = await self._contract.get_interest_owed(principal)
                owed = amount + interest
        except Exception as e:
            self._record_failure(ReconciliationFailure(agreement_id, e))
            return False

        self._store.upsert(
            agreement_id,
            on_chain_owed=owed,
            on_chain_interest=interest,
            last_reconciled_at=datetime.fromtimestamp(self._scheduler.clock.now(), tz=UTC),
            reconcile_failures=0,
            last_error=None,
        )
        self._logger.debug("reconciled", agreement_id=agreement_id, on_chain_owed=owed)
        return True

    def _record_failure(self, failure: ReconciliationFailure) -> None:
        snapshot = self._store.get(failure.agreement_id)
        failures = (snapshot.reconcile_failures if snapshot else 0) + 1
        self._store.upsert(
            failure.agreement_id,
            reconcile_failures=failures,
            last_error=str(failure.cause),
        )
        self._logger.warning(
            "reconcile_failed",
            agreement_id=failure.agreement_id,
            failures=failures,
            error=str(failure.cause),
        )
