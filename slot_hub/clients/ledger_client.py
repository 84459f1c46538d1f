import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from slot_hub.config import Settings
from slot_hub.errors import LedgerRPCError, LedgerUnavailable
from slot_hub.logging_config import get_logger

logger = get_logger(__name__)

# JSON-RPC error codes some providers use for throttling, next to plain HTTP 429
RATE_LIMIT_RPC_CODES = {429, -32429, -32005}
ACCOUNT_NOT_FOUND_MARKERS = ("could not find account", "invalid param")


@dataclass
class SignatureStatus:
    found: bool
    confirmation_status: Optional[str] = None
    err: Any = None
    slot: Optional[int] = None


@dataclass
class LatestBlockhash:
    blockhash: str
    last_valid_block_height: int


def _rpc_error_code(response: httpx.Response) -> Optional[int]:
    try:
        body = response.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    return error.get("code") if isinstance(error, dict) else None


def _retry_after_seconds(value: Optional[str], default: float) -> float:
    # Only the delta-seconds form is honoured; an HTTP-date falls back to backoff.
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class LedgerClient:
    """
    Minimal Solana JSON-RPC client over httpx. Only the calls the collect
    protocol needs are exposed.
    """

    def __init__(
        self,
        rpc_url: str,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.5,
        timeout: float = 10.0,
        commitment: str = "confirmed",
    ):
        self.client = httpx.AsyncClient(timeout=timeout)
        self.rpc_url = rpc_url
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.commitment = commitment
        self._ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerClient":
        return cls(
            rpc_url=str(settings.solana_rpc_url),
            max_retries=settings.max_retries,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            timeout=settings.rpc_timeout_seconds,
            commitment=settings.required_commitment,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request_with_retry(self, method: str, url: str, json: dict) -> httpx.Response:
        retries = 0
        backoff = self.retry_backoff_seconds
        while True:
            try:
                response = await self.client.request(method, url, json=json)
            except httpx.RequestError as exc:
                raise LedgerUnavailable(f"ledger request error: {exc}") from exc
            # 5xx is retried with the same backoff as rate limiting; both surface
            # as LedgerUnavailable once retries run out.
            retryable = response.status_code == 429 or response.status_code >= 500
            if not retryable:
                retryable = _rpc_error_code(response) in RATE_LIMIT_RPC_CODES
            if not retryable or retries >= self.max_retries:
                return response
            wait = _retry_after_seconds(response.headers.get("Retry-After"), backoff)
            logger.warning(
                "Ledger RPC throttled or failing: method=%s status=%s retry_in=%s attempt=%s",
                json.get("method"),
                response.status_code,
                wait,
                retries + 1,
            )
            await asyncio.sleep(wait)
            retries += 1
            backoff *= 2

    async def _rpc(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        response = await self._request_with_retry("POST", self.rpc_url, json=payload)
        if response.status_code == 429 or response.status_code >= 500:
            raise LedgerUnavailable(f"ledger unavailable: {method} returned {response.status_code}")
        if response.status_code >= 400:
            raise LedgerRPCError(method, response.status_code, response.text)
        body = response.json()
        error = body.get("error")
        if error and error.get("code") in RATE_LIMIT_RPC_CODES:
            raise LedgerUnavailable(f"ledger unavailable: {method} still rate limited ({error.get('code')})")
        if error:
            raise LedgerRPCError(method, error.get("code"), error.get("message", ""))
        return body.get("result")

    async def account_exists(self, address: str) -> bool:
        result = await self._rpc("getAccountInfo", [address, {"encoding": "base64", "commitment": self.commitment}])
        return bool(result and result.get("value"))

    async def get_token_balance(self, token_account: str) -> Optional[int]:
        """Raw token amount held by `token_account`, or None if the account does not exist."""
        try:
            result = await self._rpc("getTokenAccountBalance", [token_account, {"commitment": self.commitment}])
        except LedgerRPCError as exc:
            if any(marker in exc.message.lower() for marker in ACCOUNT_NOT_FOUND_MARKERS):
                return None
            raise
        value = (result or {}).get("value")
        if not value:
            return None
        return int(value["amount"])

    async def get_latest_blockhash(self) -> LatestBlockhash:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])
        value = result["value"]
        return LatestBlockhash(value["blockhash"], int(value["lastValidBlockHeight"]))

    async def get_block_height(self) -> int:
        return int(await self._rpc("getBlockHeight", [{"commitment": self.commitment}]))

    async def get_signature_status(self, signature: str) -> SignatureStatus:
        result = await self._rpc("getSignatureStatuses", [[signature], {"searchTransactionHistory": True}])
        statuses = (result or {}).get("value") or []
        status = statuses[0] if statuses else None
        if not status:
            return SignatureStatus(found=False)
        return SignatureStatus(
            found=True,
            confirmation_status=status.get("confirmationStatus"),
            err=status.get("err"),
            slot=status.get("slot"),
        )
