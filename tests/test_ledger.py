"""Tests for the ledger client, contract wrapper and providers."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from accrual_engine.ledger import (
    ContractRevertError,
    HTTPLedgerClient,
    LedgerClient,
    LedgerError,
    StaticWallet,
    SubscriptionContract,
    TokenAllowance,
)

PAYOR = "0x1111111111111111111111111111111111111111"


def make_client(handler, **kwargs) -> HTTPLedgerClient:
    return HTTPLedgerClient(
        contract="Subscription",
        base_url="http://ledger.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestHTTPLedgerClientInit:
    """Tests for HTTPLedgerClient initialization."""

    def test_init_with_explicit_params(self):
        client = HTTPLedgerClient(
            contract="Custom", base_url="http://custom:9000/", api_key="k", timeout=5.0
        )

        assert client.contract == "Custom"
        assert client.base_url == "http://custom:9000"
        assert client._api_key == "k"
        assert client._timeout == 5.0

    def test_defaults_from_settings(self):
        client = HTTPLedgerClient()

        assert client.contract == "Subscription"
        assert client.base_url == "http://ledger.test"
        assert client._max_retries == 0

    def test_satisfies_protocol(self):
        assert isinstance(HTTPLedgerClient(), LedgerClient)


class TestHTTPLedgerClientRequests:
    """Tests for gateway requests."""

    @pytest.mark.asyncio
    async def test_call_posts_args_and_unwraps_result(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"result": "35585162410681240"})

        async with make_client(handler) as client:
            result = await client.call("getAmountOwed", "1")

        assert result == "35585162410681240"
        assert seen["path"] == "/contracts/Subscription/call/getAmountOwed"
        assert seen["body"] == {"args": ["1"]}

    @pytest.mark.asyncio
    async def test_api_key_sent_as_bearer(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"result": 1})

        async with make_client(handler, api_key="secret") as client:
            await client.call("getTotalOwed", "1")

        assert seen["auth"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_get_past_events(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/contracts/Subscription/events/AddAgreement"
            assert json.loads(request.content) == {"fromBlock": 1, "toBlock": "latest"}
            return httpx.Response(200, json=[{"returnValues": {"agreementId": "1"}}])

        async with make_client(handler) as client:
            events = await client.get_past_events("AddAgreement", from_block=1)

        assert events == [{"returnValues": {"agreementId": "1"}}]

    @pytest.mark.asyncio
    async def test_get_past_events_paged_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": [{"returnValues": {}}]})

        async with make_client(handler) as client:
            events = await client.get_past_events("AddAgreement")

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_send_includes_sender(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"transactionHash": "0xabc", "status": True})

        async with make_client(handler) as client:
            receipt = await client.send("supply", "1", 5, sender=PAYOR)

        assert receipt["transactionHash"] == "0xabc"
        assert seen["body"] == {"args": ["1", 5], "from": PAYOR}

    @pytest.mark.asyncio
    async def test_revert_raises_contract_revert(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"error": {"type": "revert", "message": "not payee"}}
            )

        async with make_client(handler) as client:
            with pytest.raises(ContractRevertError, match="not payee") as exc_info:
                await client.send("withdrawFundsPayee", "1", sender=PAYOR)

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_server_error_raises_ledger_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        async with make_client(handler) as client:
            with pytest.raises(LedgerError) as exc_info:
                await client.call("getTotalOwed", "1")

        assert exc_info.value.status_code == 502
        assert not isinstance(exc_info.value, ContractRevertError)
        assert exc_info.value.details == {"raw": "bad gateway"}

    @pytest.mark.asyncio
    async def test_call_without_result_key(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"value": 1})

        async with make_client(handler) as client:
            with pytest.raises(LedgerError, match="Invalid response"):
                await client.call("getTotalOwed", "1")

    @pytest.mark.asyncio
    async def test_transport_error_retries_then_raises(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, max_retries=2)
        with patch("accrual_engine.ledger.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(LedgerError, match="Ledger request failed"):
                await client.call("getTotalOwed", "1")
        await client.close()

        assert attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_transport_error_recovers(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={"result": 7})

        client = make_client(handler, max_retries=1)
        with patch("accrual_engine.ledger.asyncio.sleep", new=AsyncMock()):
            assert await client.call("getTotalOwed", "1") == 7
        await client.close()

    @pytest.mark.asyncio
    async def test_with_contract_shares_connection(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"result": 1})

        client = make_client(handler)
        await client.call("getTotalOwed", "1")
        token = client.with_contract("StandardToken")
        await token.call("balanceOf", PAYOR)

        assert token._client is client._client
        assert paths[-1] == "/contracts/StandardToken/call/balanceOf"

        await token.close()
        assert client._client is not None
        await client.close()
        assert client._client is None


class TestSubscriptionContract:
    """Tests for the typed contract wrapper."""

    @pytest.mark.asyncio
    async def test_owed_queries_coerce_to_int(self, mock_ledger, contract):
        mock_ledger.call.return_value = "35585162410681240"

        assert await contract.get_amount_owed("1") == 35585162410681240
        mock_ledger.call.assert_awaited_with("getAmountOwed", "1")

        assert await contract.get_interest_owed(100) == 35585162410681240
        mock_ledger.call.assert_awaited_with("getInterestOwed", 100)

        assert await contract.get_total_owed("1") == 35585162410681240
        mock_ledger.call.assert_awaited_with("getTotalOwed", "1")

    @pytest.mark.asyncio
    async def test_non_numeric_result_is_ledger_error(self, mock_ledger, contract):
        mock_ledger.call.return_value = "oops"

        with pytest.raises(LedgerError, match="getTotalOwed"):
            await contract.get_total_owed("1")

    @pytest.mark.asyncio
    async def test_get_agreement(self, mock_ledger, contract):
        mock_ledger.call.return_value = {"annualAmount": "1"}

        assert await contract.get_agreement("1") == {"annualAmount": "1"}

        mock_ledger.call.return_value = ["1"]
        with pytest.raises(LedgerError):
            await contract.get_agreement("1")

    @pytest.mark.asyncio
    async def test_past_agreements_unwraps_return_values(self, mock_ledger, contract):
        mock_ledger.get_past_events.return_value = [
            {"event": "AddAgreement", "returnValues": {"agreementId": "1"}},
            {"agreementId": "2"},
        ]

        payloads = await contract.past_agreements(from_block=1)

        assert payloads == [{"agreementId": "1"}, {"agreementId": "2"}]
        mock_ledger.get_past_events.assert_awaited_once_with(
            "AddAgreement", from_block=1, to_block="latest"
        )

    @pytest.mark.asyncio
    async def test_transactions_default_to_active_account(self, mock_ledger, contract):
        mock_ledger.send.return_value = {"status": True}

        await contract.supply("1", 10)
        mock_ledger.send.assert_awaited_with("supply", "1", 10, sender=PAYOR)

        await contract.withdraw_funds_payee("1", sender="0xother")
        mock_ledger.send.assert_awaited_with("withdrawFundsPayee", "1", sender="0xother")

    @pytest.mark.asyncio
    async def test_create_agreement_argument_order(self, mock_ledger, contract):
        mock_ledger.send.return_value = {}

        await contract.create_agreement("0xrecv", PAYOR, "0xtoken", 5, 0, "QmDoc")

        mock_ledger.send.assert_awaited_once_with(
            "createAgreement", "0xrecv", PAYOR, "0xtoken", 5, 0, "QmDoc", sender=PAYOR
        )

    @pytest.mark.asyncio
    async def test_send_without_account_fails(self, mock_ledger):
        contract = SubscriptionContract(mock_ledger, StaticWallet(None))

        with pytest.raises(LedgerError, match="No active account"):
            await contract.supply("1", 10)
        mock_ledger.send.assert_not_awaited()


class TestProviders:
    def test_static_wallet_switch(self):
        wallet = StaticWallet("0xa")
        wallet.switch("0xb")

        assert wallet.active_account() == "0xb"

    @pytest.mark.asyncio
    async def test_token_allowance(self):
        client = MagicMock()
        client.call = AsyncMock(side_effect=["100", "0x10"])
        allowance = TokenAllowance(client)

        assert await allowance.balance_of(PAYOR) == 100
        assert await allowance.allowance(PAYOR, "Subscription") == 16
        client.call.assert_awaited_with("allowance", PAYOR, "Subscription")
