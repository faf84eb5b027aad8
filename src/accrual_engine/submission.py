"""Submitting new agreements to the ledger."""

from decimal import InvalidOperation
from typing import Any

import structlog

from accrual_engine.config import FlatSettings, get_settings
from accrual_engine.ledger import AllowanceProvider, SubscriptionContract, WalletProvider
from accrual_engine.models import Agreement, ValidationError
from accrual_engine.timeutils import to_raw_amount

logger = structlog.get_logger(__name__)


class SubmissionError(Exception):
    """A new agreement could not be submitted or confirmed."""


def _agreement_payload(receipt: dict[str, Any]) -> dict[str, Any] | None:
    events = receipt.get("events") or {}
    event = events.get("AddAgreement") if isinstance(events, dict) else None
    if isinstance(event, list):
        event = event[0] if event else None
    if not isinstance(event, dict):
        return None
    values = event.get("returnValues", event)
    return values if isinstance(values, dict) else None


class AgreementSubmitter:
    """Validates, funds-checks and sends ``createAgreement`` transactions.

    The payor's token balance and the allowance granted to the subscription
    contract must both cover one year of payments before anything is sent.
    """

    def __init__(
        self,
        contract: SubscriptionContract,
        wallet: WalletProvider,
        allowance: AllowanceProvider | None = None,
        settings: FlatSettings | None = None,
    ):
        self._contract = contract
        self._wallet = wallet
        self._allowance = allowance
        self._settings = settings or get_settings()
        self._logger = logger.bind(component="agreement_submitter")

    async def check_funding(self, payor: str, required: int) -> None:
        """Ensure the payor can fund ``required`` smallest units.

        Raises:
            SubmissionError: If balance or allowance falls short.
        """
        if self._allowance is None:
            return
        balance = await self._allowance.balance_of(payor)
        if balance < required:
            raise SubmissionError(f"Insufficient balance: {balance} < {required}")
        allowed = await self._allowance.allowance(payor, self._settings.subscription_contract)
        if allowed < required:
            raise SubmissionError(f"Insufficient allowance: {allowed} < {required}")

    async def submit(
        self,
        receiver: str,
        annual_amount: Any,
        description: str = "",
        token: str | None = None,
        start_date: int = 0,
    ) -> Agreement:
        """Create an agreement paid by the active account.

        Args:
            receiver: Address being paid.
            annual_amount: Yearly amount in whole tokens (e.g. ``"100000"``).
            description: Content hash documenting the agreement.
            token: Token contract paid in. Defaults to the configured token.
            start_date: Unix seconds, or 0 to start when mined.

        Returns:
            The agreement as emitted by the ledger.

        Raises:
            ValidationError: If the terms are malformed.
            SubmissionError: If there is no payor, funding is short, or the
                receipt carries no ``AddAgreement`` event.
        """
        payor = self._wallet.active_account()
        if not payor:
            raise SubmissionError("No active account to pay from")
        if not receiver:
            raise ValidationError("receiver is required")
        try:
            raw_amount = to_raw_amount(annual_amount)
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"annual_amount is not a number: {annual_amount!r}") from e
        if raw_amount <= 0:
            raise ValidationError(f"annual_amount must be positive, got {annual_amount!r}")
        if start_date < 0:
            raise ValidationError(f"start_date must be non-negative, got {start_date}")

        await self.check_funding(payor, raw_amount)

        receipt = await self._contract.create_agreement(
            receiver,
            payor,
            token or self._settings.token_contract,
            raw_amount,
            start_date,
            description,
            sender=payor,
        )
        values = _agreement_payload(receipt)
        if values is None:
            raise SubmissionError("Receipt has no AddAgreement event")

        agreement = Agreement.from_event(
            values, default_interest_rate=self._settings.default_interest_rate
        )
        self._logger.info(
            "agreement_created",
            agreement_id=agreement.agreement_id,
            receiver=receiver,
            annual_amount=raw_amount,
        )
        return agreement
