"""Accrual engine - wires the loader, poller and store for one view.

A view activates the engine, which loads the agreements to display, starts
watching each of them and exposes their snapshots. Deactivating the view stops
every tick and discards the snapshots.
"""

import asyncio
from typing import Any

import structlog

from accrual_engine.clock import Clock
from accrual_engine.config import FlatSettings, get_settings
from accrual_engine.ledger import (
    AllowanceProvider,
    HTTPLedgerClient,
    LedgerClient,
    StaticWallet,
    SubscriptionContract,
    TokenAllowance,
    WalletProvider,
)
from accrual_engine.loader import SubscriptionListLoader
from accrual_engine.models import AccrualSnapshot, Agreement, ValidationError
from accrual_engine.poller import ReconciliationPoller
from accrual_engine.scheduler import TickScheduler
from accrual_engine.store import SnapshotStore
from accrual_engine.submission import AgreementSubmitter
from accrual_engine.timeutils import format_amount, to_datetime

logger = structlog.get_logger(__name__)


class AccrualEngine:
    """Facade over the accrual components for a single consuming view.

    Usage:
        async with AccrualEngine(wallet=StaticWallet(account)) as engine:
            await engine.start(receiver=account)
            snapshot = engine.snapshot(agreement_id)
    """

    def __init__(
        self,
        client: LedgerClient | None = None,
        wallet: WalletProvider | None = None,
        allowance: AllowanceProvider | None = None,
        clock: Clock | None = None,
        settings: FlatSettings | None = None,
    ):
        self._settings = settings or get_settings()
        self._owns_client = client is None
        self._client: LedgerClient = client or HTTPLedgerClient(
            contract=self._settings.subscription_contract
        )
        self._token_client: HTTPLedgerClient | None = None
        if allowance is None and isinstance(self._client, HTTPLedgerClient):
            self._token_client = self._client.with_contract(self._settings.token_contract)
            allowance = TokenAllowance(self._token_client)

        self.wallet = wallet or StaticWallet()
        self.contract = SubscriptionContract(self._client, self.wallet)
        self.store = SnapshotStore()
        self.scheduler = TickScheduler(clock)
        self.poller = ReconciliationPoller(
            self.contract, self.store, self.scheduler, settings=self._settings
        )
        self.loader = SubscriptionListLoader(self.contract, settings=self._settings)
        self.submitter = AgreementSubmitter(
            self.contract, self.wallet, allowance=allowance, settings=self._settings
        )
        self._logger = logger.bind(component="accrual_engine")

    async def __aenter__(self) -> "AccrualEngine":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def agreements(self) -> list[Agreement]:
        """Terms of every watched agreement."""
        result = []
        for agreement_id in self.poller.watched:
            agreement = self.poller.get_agreement(agreement_id)
            if agreement is not None:
                result.append(agreement)
        return result

    async def start(
        self, receiver: str | None = None, payor: str | None = None
    ) -> list[Agreement]:
        """Load agreements and watch every valid one.

        Returns:
            The agreements now being watched. Empty if loading failed.
        """
        agreements = await self.loader.load(receiver=receiver, payor=payor)
        watched: list[Agreement] = []
        for agreement in agreements:
            try:
                watched.append(self.poller.watch(agreement))
            except ValidationError as e:
                self._logger.warning(
                    "agreement_skipped", agreement_id=agreement.agreement_id, error=str(e)
                )
        self._logger.info("engine_started", watched=len(watched))
        return watched

    async def submit(
        self,
        receiver: str,
        annual_amount: Any,
        description: str = "",
        token: str | None = None,
        start_date: int = 0,
    ) -> Agreement:
        """Create a new agreement and start watching it.

        Once the transaction is sent the created agreement is always returned.
        If its terms cannot be watched the failure is logged and the agreement
        is returned unwatched.
        """
        agreement = await self.submitter.submit(
            receiver, annual_amount, description=description, token=token, start_date=start_date
        )
        try:
            return self.poller.watch(agreement)
        except ValidationError as e:
            self._logger.error(
                "created_agreement_not_watched",
                agreement_id=agreement.agreement_id,
                error=str(e),
            )
            return agreement

    async def withdraw(self, agreement_id: str) -> dict[str, Any]:
        """Withdraw accrued funds to the receiver.

        The local estimate is not reset here; the next reconciliation reflects
        the withdrawal through the authoritative figures.
        """
        return await self.contract.withdraw_funds_payee(agreement_id)

    async def supply(self, agreement_id: str, amount: int) -> dict[str, Any]:
        """Top up an agreement's escrow."""
        return await self.contract.supply(agreement_id, amount)

    def snapshot(self, agreement_id: str) -> AccrualSnapshot | None:
        """Read-only copy of an agreement's snapshot."""
        return self.store.get(agreement_id)

    def snapshots(self) -> dict[str, AccrualSnapshot]:
        """Read-only copies of every snapshot."""
        return self.store.snapshot_all()

    async def stop(self) -> None:
        """Stop all ticks and discard all snapshots."""
        await self.poller.stop()
        self._logger.info("engine_stopped")

    async def close(self) -> None:
        """Stop and release the ledger clients the engine created."""
        await self.stop()
        if self._token_client is not None:
            await self._token_client.close()
        if self._owns_client and isinstance(self._client, HTTPLedgerClient):
            await self._client.close()


def describe(agreement: Agreement, snapshot: AccrualSnapshot) -> str:
    """One-line display of an agreement's reconciled figures."""
    on_chain = (
        format_amount(snapshot.on_chain_owed, 10)
        if snapshot.on_chain_owed is not None
        else "pending"
    )
    stale = " (stale)" if snapshot.is_stale else ""
    return (
        f"{agreement.agreement_id} payor={agreement.payor} "
        f"annual={format_amount(agreement.annual_amount, 2)} "
        f"since={to_datetime(agreement.start_date).isoformat()} "
        f"accrued={format_amount(snapshot.principal_accrued, 5)} "
        f"with_interest={format_amount(snapshot.interest_accrued, 10)} "
        f"on_chain={on_chain}{stale}"
    )


async def main() -> None:
    """Main entry point for watching agreements from the command line.

    Usage:
        # Watch every agreement paying an address for one minute
        python -m accrual_engine watch --account 0xabc --receiver 0xabc --seconds 60
    """
    import argparse
    import sys

    from accrual_engine.config import configure_logging

    configure_logging()

    parser = argparse.ArgumentParser(description="Accrual estimation and reconciliation")
    subparsers = parser.add_subparsers(dest="command", required=True)
    watch = subparsers.add_parser("watch", help="Watch accrual of agreements")
    watch.add_argument("--account", help="Active account (default sender)")
    watch.add_argument("--receiver", help="Only agreements paying this address")
    watch.add_argument("--payor", help="Only agreements paid by this address")
    watch.add_argument(
        "--seconds",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    watch.add_argument(
        "--every",
        type=float,
        default=1.0,
        help="Print interval in seconds (default: 1)",
    )

    args = parser.parse_args()

    try:
        async with AccrualEngine(wallet=StaticWallet(args.account)) as engine:
            agreements = await engine.start(receiver=args.receiver, payor=args.payor)
            if not agreements:
                print("No agreements found")
                return
            elapsed = 0.0
            while args.seconds is None or elapsed < args.seconds:
                await asyncio.sleep(args.every)
                elapsed += args.every
                for agreement in engine.agreements:
                    snapshot = engine.snapshot(agreement.agreement_id)
                    if snapshot is not None:
                        print(describe(agreement, snapshot))
    except KeyboardInterrupt:
        logger.info("watch_interrupted")
    except Exception as e:
        logger.exception("watch_error", error=str(e))
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
