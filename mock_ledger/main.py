import base64
import hashlib
import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from pydantic import BaseModel
from solders.hash import Hash
from solders.transaction import Transaction

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("mock-ledger")

# blocks a blockhash stays usable for, as on mainnet
BLOCKHASH_VALIDITY = 150
AUTO_CONFIRM = os.getenv("MOCK_LEDGER_AUTO_CONFIRM", "true").lower() == "true"

app = FastAPI(title="Mock Ledger")


class RPCRequest(BaseModel):
    jsonrpc: str = "2.0"
    id: Any = None
    method: str
    params: List[Any] = []


class TokenAccountState(BaseModel):
    address: str
    amount: int


class SignatureState(BaseModel):
    signature: str
    confirmationStatus: Optional[str] = "confirmed"
    err: Any = None


class LedgerState:
    def __init__(self):
        self.block_height = 1000
        self.token_accounts: Dict[str, int] = {}
        self.accounts: set[str] = set()
        self.signatures: Dict[str, dict] = {}

    def blockhash(self) -> str:
        return str(Hash(hashlib.sha256(self.block_height.to_bytes(8, "little")).digest()))


state = LedgerState()


class RPCFailure(Exception):
    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message


def _context_value(value: Any) -> dict:
    return {"context": {"slot": state.block_height}, "value": value}


def _get_latest_blockhash(params: list) -> dict:
    return _context_value({
        "blockhash": state.blockhash(),
        "lastValidBlockHeight": state.block_height + BLOCKHASH_VALIDITY,
    })


def _get_block_height(params: list) -> int:
    return state.block_height


def _get_account_info(params: list) -> dict:
    address = params[0]
    if address not in state.accounts and address not in state.token_accounts:
        return _context_value(None)
    return _context_value({
        "data": ["", "base64"],
        "executable": False,
        "lamports": 2039280,
        "owner": "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
    })


def _get_token_account_balance(params: list) -> dict:
    address = params[0]
    if address not in state.token_accounts:
        raise RPCFailure(-32602, "Invalid param: could not find account")
    amount = state.token_accounts[address]
    return _context_value({"amount": str(amount), "decimals": 6, "uiAmount": amount / 10 ** 6})


def _get_signature_statuses(params: list) -> dict:
    return _context_value([state.signatures.get(sig) for sig in params[0]])


def _send_transaction(params: list) -> str:
    raw = base64.b64decode(params[0])
    try:
        tx = Transaction.from_bytes(raw)
    except ValueError as exc:
        raise RPCFailure(-32602, f"failed to deserialize transaction: {exc}") from exc
    signature = str(tx.signatures[0])
    if AUTO_CONFIRM:
        state.signatures[signature] = {
            "slot": state.block_height,
            "confirmations": None,
            "err": None,
            "confirmationStatus": "confirmed",
        }
    logger.info("Accepted transaction signature=%s auto_confirm=%s", signature, AUTO_CONFIRM)
    return signature


METHODS = {
    "getLatestBlockhash": _get_latest_blockhash,
    "getBlockHeight": _get_block_height,
    "getAccountInfo": _get_account_info,
    "getTokenAccountBalance": _get_token_account_balance,
    "getSignatureStatuses": _get_signature_statuses,
    "sendTransaction": _send_transaction,
}


@app.post("/")
async def rpc(body: RPCRequest):
    handler = METHODS.get(body.method)
    if handler is None:
        logger.warning("Unsupported RPC method=%s", body.method)
        return {"jsonrpc": "2.0", "id": body.id, "error": {"code": -32601, "message": "Method not found"}}
    try:
        result = handler(body.params)
    except RPCFailure as exc:
        logger.info("RPC method=%s failed code=%s message=%s", body.method, exc.code, exc.message)
        return {"jsonrpc": "2.0", "id": body.id, "error": {"code": exc.code, "message": exc.message}}
    return {"jsonrpc": "2.0", "id": body.id, "result": result}


@app.post("/admin/token-accounts")
async def set_token_account(body: TokenAccountState):
    state.token_accounts[body.address] = body.amount
    logger.info("Set token account %s balance=%s", body.address, body.amount)
    return {"address": body.address, "amount": body.amount}


@app.post("/admin/signatures")
async def set_signature(body: SignatureState):
    state.signatures[body.signature] = {
        "slot": state.block_height,
        "confirmations": None,
        "err": body.err,
        "confirmationStatus": body.confirmationStatus,
    }
    logger.info("Set signature %s status=%s err=%s", body.signature, body.confirmationStatus, body.err)
    return state.signatures[body.signature]


@app.post("/admin/advance-blocks/{count}")
async def advance_blocks(count: int):
    state.block_height += count
    return {"blockHeight": state.block_height}


@app.post("/admin/clear")
async def clear_state():
    """
    Dangerous: resets every mock account, signature and the block height.
    """
    global state
    state = LedgerState()
    logger.warning("Cleared mock ledger state via admin endpoint")
    return {"status": "cleared"}
