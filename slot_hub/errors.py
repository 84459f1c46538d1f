from typing import Any

from fastapi import HTTPException


class HubError(HTTPException):
    """
    Base for errors surfaced to the client. `detail` is always a dict with an
    "error" message plus any diagnostic fields passed as keyword arguments.
    """
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        self.message = message
        super().__init__(status_code=self.status_code, detail={"error": message, **extra})


class InvalidInput(HubError):
    status_code = 400


class RateLimited(HubError):
    status_code = 429


class AlreadyCollected(HubError):
    status_code = 409

    def __init__(self, message: str = "Rewards already collected or a collect is in progress", **extra: Any):
        super().__init__(message, actualAmount=0, **extra)


class TreasuryUnavailable(HubError):
    status_code = 503


class TreasuryAccountMissing(TreasuryUnavailable):
    pass


class TreasuryInsufficientFunds(TreasuryUnavailable):
    pass


class TransferFailed(HubError):
    status_code = 400


class PlayerNotFound(HubError):
    status_code = 404


class PurchaseConflict(HubError):
    status_code = 409


class NoSpinsRemaining(HubError):
    status_code = 409


class TreasuryConfigError(HubError):
    status_code = 500


class LedgerUnavailable(HubError):
    status_code = 502


class LedgerRPCError(Exception):
    """A JSON-RPC error from the ledger node that retrying will not fix."""

    def __init__(self, method: str, code: int | None, message: str):
        self.method = method
        self.code = code
        self.message = message
        super().__init__(f"{method} failed ({code}): {message}")


class ConcurrentUpdate(HubError):
    status_code = 409
