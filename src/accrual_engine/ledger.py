"""Ledger collaborators: query client, contract wrapper, wallet and allowance.

The engine talks to the ledger only through ``LedgerClient``. The bundled
``HTTPLedgerClient`` speaks to a JSON contract gateway:

    POST /contracts/{contract}/events/{event}   {"fromBlock", "toBlock"}
    POST /contracts/{contract}/call/{method}    {"args", "from"}
    POST /contracts/{contract}/send/{method}    {"args", "from"}

Calls return ``{"result": ...}``; sends return the transaction receipt.
"""

import asyncio
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from accrual_engine.config import get_settings
from accrual_engine.models import ValidationError, parse_int

logger = structlog.get_logger(__name__)


class LedgerError(Exception):
    """Base exception for ledger query and transaction failures."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class ContractRevertError(LedgerError):
    """The contract rejected the call or transaction."""

    pass


@runtime_checkable
class LedgerClient(Protocol):
    """Read and write access to one deployed contract."""

    async def get_past_events(
        self, event_name: str, from_block: int | str = 0, to_block: int | str = "latest"
    ) -> list[dict[str, Any]]: ...

    async def call(self, method: str, *args: Any) -> Any: ...

    async def send(self, method: str, *args: Any, sender: str) -> dict[str, Any]: ...


class WalletProvider(Protocol):
    """Supplies the active account used as the default sender."""

    def active_account(self) -> str | None: ...


class AllowanceProvider(Protocol):
    """Token balance and allowance figures for a payor."""

    async def balance_of(self, account: str) -> int: ...

    async def allowance(self, owner: str, spender: str) -> int: ...


class StaticWallet:
    """Wallet provider with a fixed active account."""

    def __init__(self, account: str | None = None):
        self._account = account

    def active_account(self) -> str | None:
        return self._account

    def switch(self, account: str | None) -> None:
        """Change the active account."""
        self._account = account


class HTTPLedgerClient:
    """Async client for a JSON contract gateway bound to one contract.

    Contracts are addressed by their deployment name (``Subscription``,
    ``StandardToken``). The gateway resolves names to deployed addresses, both
    in request paths and where a name is passed as an argument, such as the
    spender of an allowance or the token of a new agreement.
    """

    def __init__(
        self,
        contract: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.contract = contract or settings.subscription_contract
        self.base_url = (base_url or settings.ledger_gateway_url).rstrip("/")
        if api_key is None and settings.ledger_api_key is not None:
            api_key = settings.ledger_api_key.get_secret_value()
        self._api_key = api_key
        self._timeout = timeout if timeout is not None else settings.ledger_timeout
        self._max_retries = (
            max_retries if max_retries is not None else settings.ledger_max_retries
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._owns_client = True

    def with_contract(self, contract: str) -> "HTTPLedgerClient":
        """Return a client for another contract sharing this HTTP connection."""
        sibling = HTTPLedgerClient(
            contract=contract,
            base_url=self.base_url,
            api_key=self._api_key,
            timeout=self._timeout,
            max_retries=self._max_retries,
            transport=self._transport,
        )
        if self._client is not None:
            sibling._client = self._client
            sibling._owns_client = False
        return sibling

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "HTTPLedgerClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _request(
        self,
        path: str,
        json: dict[str, Any],
        retry_count: int = 0,
    ) -> Any:
        """POST to the gateway, retrying transport errors with backoff."""
        client = await self._get_client()
        url = f"/contracts/{self.contract}{path}"

        try:
            response = await client.post(url, json=json, headers=self._get_headers())
        except httpx.RequestError as e:
            if retry_count < self._max_retries:
                await asyncio.sleep(2**retry_count)
                return await self._request(path, json, retry_count + 1)
            raise LedgerError(f"Ledger request failed: {e}") from e

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {"raw": response.text[:500] if response.text else "empty response"}
            error = error_detail.get("error") if isinstance(error_detail, dict) else None
            if isinstance(error, dict) and error.get("type") == "revert":
                raise ContractRevertError(
                    f"Contract reverted: {error.get('message', 'no reason')}",
                    status_code=response.status_code,
                    details=error_detail,
                )
            raise LedgerError(
                f"Ledger error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        return response.json() if response.content else {}

    async def get_past_events(
        self, event_name: str, from_block: int | str = 0, to_block: int | str = "latest"
    ) -> list[dict[str, Any]]:
        """Fetch historical events emitted by the contract."""
        result = await self._request(
            f"/events/{event_name}",
            json={"fromBlock": from_block, "toBlock": to_block},
        )
        if isinstance(result, dict):
            result = result.get("items", [])
        if not isinstance(result, list):
            raise LedgerError("Invalid events response format", details=result)
        return result

    async def call(self, method: str, *args: Any) -> Any:
        """Run a read-only contract method."""
        result = await self._request(f"/call/{method}", json={"args": list(args)})
        if not isinstance(result, dict) or "result" not in result:
            raise LedgerError(f"Invalid response for {method}", details=result)
        return result["result"]

    async def send(self, method: str, *args: Any, sender: str) -> dict[str, Any]:
        """Submit a state-changing transaction and return its receipt."""
        result = await self._request(
            f"/send/{method}", json={"args": list(args), "from": sender}
        )
        if not isinstance(result, dict):
            raise LedgerError(f"Invalid receipt for {method}", details=result)
        logger.info(
            "transaction_sent",
            contract=self.contract,
            method=method,
            tx=result.get("transactionHash"),
        )
        return result


def _as_int(value: Any, method: str) -> int:
    try:
        return parse_int(value, method)
    except ValidationError as e:
        raise LedgerError(f"Unexpected {method} value: {value!r}", details=value) from e


class SubscriptionContract:
    """Typed wrapper around the subscription contract's methods."""

    def __init__(self, client: LedgerClient, wallet: WalletProvider | None = None):
        self._client = client
        self._wallet = wallet

    @property
    def client(self) -> LedgerClient:
        return self._client

    def _sender(self, sender: str | None) -> str:
        account = sender or (self._wallet.active_account() if self._wallet else None)
        if not account:
            raise LedgerError("No active account to send from")
        return account

    # === Queries ===

    async def past_agreements(
        self, from_block: int | str = 1, to_block: int | str = "latest"
    ) -> list[dict[str, Any]]:
        """Payloads of every ``AddAgreement`` event in the block range."""
        events = await self._client.get_past_events(
            "AddAgreement", from_block=from_block, to_block=to_block
        )
        return [event.get("returnValues", event) for event in events]

    async def get_agreement(self, agreement_id: str) -> dict[str, Any]:
        result = await self._client.call("getAgreement", agreement_id)
        if not isinstance(result, dict):
            raise LedgerError("Unexpected getAgreement value", details=result)
        return result

    async def get_amount_owed(self, agreement_id: str) -> int:
        return _as_int(await self._client.call("getAmountOwed", agreement_id), "getAmountOwed")

    async def get_interest_owed(self, amount: int) -> int:
        return _as_int(await self._client.call("getInterestOwed", amount), "getInterestOwed")

    async def get_total_owed(self, agreement_id: str) -> int:
        return _as_int(await self._client.call("getTotalOwed", agreement_id), "getTotalOwed")

    # === Transactions ===

    async def create_agreement(
        self,
        receiver: str,
        payor: str,
        token: str,
        annual_amount: int,
        start_date: int,
        description: str,
        sender: str | None = None,
    ) -> dict[str, Any]:
        return await self._client.send(
            "createAgreement",
            receiver,
            payor,
            token,
            annual_amount,
            start_date,
            description,
            sender=self._sender(sender),
        )

    async def supply(
        self, agreement_id: str, amount: int, sender: str | None = None
    ) -> dict[str, Any]:
        return await self._client.send(
            "supply", agreement_id, amount, sender=self._sender(sender)
        )

    async def withdraw_funds_payee(
        self, agreement_id: str, sender: str | None = None
    ) -> dict[str, Any]:
        return await self._client.send(
            "withdrawFundsPayee", agreement_id, sender=self._sender(sender)
        )


class TokenAllowance:
    """``AllowanceProvider`` reading an ERC-20 style token contract."""

    def __init__(self, client: LedgerClient):
        self._client = client

    async def balance_of(self, account: str) -> int:
        return _as_int(await self._client.call("balanceOf", account), "balanceOf")

    async def allowance(self, owner: str, spender: str) -> int:
        return _as_int(await self._client.call("allowance", owner, spender), "allowance")
