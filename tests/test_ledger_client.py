import asyncio

import httpx
import pytest

from slot_hub.clients.ledger_client import LedgerClient
from slot_hub.errors import LedgerRPCError, LedgerUnavailable


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


def rpc_error(code, message, status_code=200):
    return httpx.Response(status_code, json={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}})


@pytest.fixture
def no_sleep(monkeypatch):
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr("slot_hub.clients.ledger_client.asyncio.sleep", fake_sleep)
    return waits


def scripted(monkeypatch, client, responses):
    calls = []

    async def fake_request(method, url, json):
        calls.append(json)
        return responses.pop(0)

    monkeypatch.setattr(client.client, "request", fake_request)
    return calls


def run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# Throttled (429 with Retry-After) -> retried, then success.
def test_retries_on_rate_limit_honouring_retry_after(monkeypatch, no_sleep):
    client = LedgerClient("http://ledger", max_retries=3, retry_backoff_seconds=0.5)
    calls = scripted(
        monkeypatch,
        client,
        [httpx.Response(429, headers={"Retry-After": "2"}), rpc_error(-32005, "Too many requests"), rpc_result(1234)],
    )

    assert run(client.get_block_height()) == 1234
    assert len(calls) == 3
    assert no_sleep == [2.0, 1.0]


def test_server_errors_exhaust_retries(monkeypatch, no_sleep):
    client = LedgerClient("http://ledger", max_retries=2, retry_backoff_seconds=1)
    calls = scripted(monkeypatch, client, [httpx.Response(503), httpx.Response(502), httpx.Response(500)])

    with pytest.raises(LedgerUnavailable):
        run(client.get_block_height())
    assert len(calls) == 3
    assert no_sleep == [1, 2]


def test_rate_limit_code_past_last_retry_is_unavailable(monkeypatch, no_sleep):
    client = LedgerClient("http://ledger", max_retries=2, retry_backoff_seconds=1)
    calls = scripted(
        monkeypatch,
        client,
        [rpc_error(-32429, "rate limited"), rpc_error(-32005, "Too many requests"), rpc_error(-32429, "rate limited")],
    )

    with pytest.raises(LedgerUnavailable):
        run(client.get_block_height())
    assert len(calls) == 3
    assert no_sleep == [1, 2]


def test_http_date_retry_after_falls_back_to_backoff(monkeypatch, no_sleep):
    client = LedgerClient("http://ledger", max_retries=1, retry_backoff_seconds=0.5)
    scripted(
        monkeypatch,
        client,
        [httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}), rpc_result(77)],
    )

    assert run(client.get_block_height()) == 77
    assert no_sleep == [0.5]


def test_terminal_rpc_error_is_not_retried(monkeypatch, no_sleep):
    client = LedgerClient("http://ledger", max_retries=3)
    calls = scripted(monkeypatch, client, [rpc_error(-32602, "Invalid params: bad signature")])

    with pytest.raises(LedgerRPCError) as exc_info:
        run(client.get_signature_status("sig"))
    assert exc_info.value.code == -32602
    assert exc_info.value.method == "getSignatureStatuses"
    assert len(calls) == 1
    assert no_sleep == []


def test_client_error_status_is_terminal(monkeypatch, no_sleep):
    client = LedgerClient("http://ledger", max_retries=3)
    scripted(monkeypatch, client, [httpx.Response(400, text="bad request")])

    with pytest.raises(LedgerRPCError) as exc_info:
        run(client.get_block_height())
    assert exc_info.value.code == 400


def test_transport_error_is_unavailable(monkeypatch):
    client = LedgerClient("http://ledger")

    async def refused(method, url, json):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(client.client, "request", refused)
    with pytest.raises(LedgerUnavailable):
        run(client.get_block_height())


def test_signature_status_parsing(monkeypatch):
    client = LedgerClient("http://ledger")
    scripted(
        monkeypatch,
        client,
        [
            rpc_result({"context": {"slot": 5}, "value": [None]}),
            rpc_result({"context": {"slot": 5}, "value": [{"slot": 4, "confirmations": None, "err": None, "confirmationStatus": "finalized"}]}),
        ],
    )

    missing = run(client.get_signature_status("sig"))
    assert missing.found is False

    status = run(client.get_signature_status("sig"))
    assert status.found is True
    assert status.confirmation_status == "finalized"
    assert status.err is None
    assert status.slot == 4


def test_token_balance_missing_account_is_none(monkeypatch):
    client = LedgerClient("http://ledger")
    calls = scripted(
        monkeypatch,
        client,
        [
            rpc_error(-32602, "Invalid param: could not find account"),
            rpc_result({"context": {"slot": 5}, "value": {"amount": "2500000", "decimals": 6}}),
        ],
    )

    assert run(client.get_token_balance("ata")) is None
    assert run(client.get_token_balance("ata")) == 2_500_000
    assert calls[0]["method"] == "getTokenAccountBalance"
    assert calls[0]["params"] == ["ata", {"commitment": "confirmed"}]


def test_latest_blockhash_and_account_lookup(monkeypatch):
    client = LedgerClient("http://ledger", commitment="finalized")
    scripted(
        monkeypatch,
        client,
        [
            rpc_result({"context": {"slot": 1}, "value": {"blockhash": "abc", "lastValidBlockHeight": 300}}),
            rpc_result({"context": {"slot": 1}, "value": None}),
            rpc_result({"context": {"slot": 1}, "value": {"lamports": 1}}),
        ],
    )

    latest = run(client.get_latest_blockhash())
    assert latest.blockhash == "abc"
    assert latest.last_valid_block_height == 300
    assert run(client.account_exists("ata")) is False
    assert run(client.account_exists("ata")) is True
