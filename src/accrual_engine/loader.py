"""Loads the agreements a view should display from historical ledger events."""

from typing import Any

import structlog

from accrual_engine.config import FlatSettings, get_settings
from accrual_engine.ledger import SubscriptionContract
from accrual_engine.models import Agreement

logger = structlog.get_logger(__name__)


class LoadFailure(Exception):
    """Fetching historical agreement events failed."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to load agreements: {cause}")
        self.cause = cause


class SubscriptionListLoader:
    """One-shot fetch of ``AddAgreement`` events mapped to ``Agreement`` records."""

    def __init__(self, contract: SubscriptionContract, settings: FlatSettings | None = None):
        self._contract = contract
        self._settings = settings or get_settings()
        self._logger = logger.bind(component="subscription_loader")
        self.last_failure: LoadFailure | None = None

    async def load(
        self, receiver: str | None = None, payor: str | None = None
    ) -> list[Agreement]:
        """Fetch every agreement from the configured first block to the head.

        Args:
            receiver: Keep only agreements paying this address.
            payor: Keep only agreements paid by this address.

        Returns:
            Agreements in event order. Empty if the fetch failed.
        """
        self.last_failure = None
        try:
            payloads = await self._contract.past_agreements(
                from_block=self._settings.from_block, to_block="latest"
            )
        except Exception as e:
            self.last_failure = LoadFailure(e)
            self._logger.error("agreements_load_failed", error=str(e))
            return []

        agreements = self._map_events(payloads)
        if receiver:
            agreements = [a for a in agreements if _same_address(a.receiver, receiver)]
        if payor:
            agreements = [a for a in agreements if _same_address(a.payor, payor)]

        self._logger.info(
            "agreements_loaded",
            events=len(payloads),
            agreements=len(agreements),
            receiver=receiver,
            payor=payor,
        )
        return agreements

    def _map_events(self, payloads: list[dict[str, Any]]) -> list[Agreement]:
        agreements: list[Agreement] = []
        seen: set[str] = set()
        for values in payloads:
            try:
                agreement = Agreement.from_event(
                    values, default_interest_rate=self._settings.default_interest_rate
                )
            except (ValueError, TypeError, AttributeError) as e:
                self._logger.warning("malformed_agreement_event", error=str(e))
                continue
            if agreement.agreement_id in seen:
                continue
            seen.add(agreement.agreement_id)
            agreements.append(agreement)
        return agreements


def _same_address(left: str, right: str) -> bool:
    # Hex addresses compare case-insensitively (checksum casing varies)
    return left.lower() == right.lower()
