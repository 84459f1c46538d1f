import math
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional

from solders.pubkey import Pubkey
from solders.signature import Signature

from slot_hub.errors import InvalidInput
from slot_hub.models import CollectTransfer, Player


def to_minor_units(amount: float, decimals: int) -> int:
    """Convert a display amount to integer minor units, truncating sub-unit dust."""
    try:
        scaled = Decimal(str(amount)) * (10 ** decimals)
    except InvalidOperation as exc:
        raise InvalidInput("Invalid amount") from exc
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def to_display_units(units: Optional[int], decimals: int) -> float:
    return int(units or 0) / (10 ** decimals)


def short_address(address: str) -> str:
    return f"{address[:4]}...{address[-4:]}"


def validate_wallet(address: Optional[str], field: str = "walletAddress") -> Pubkey:
    if not address:
        raise InvalidInput(f"{field} is required")
    try:
        return Pubkey.from_string(address)
    except ValueError as exc:
        raise InvalidInput("Invalid wallet address format") from exc


def validate_signature(signature: Optional[str]) -> Signature:
    if not signature:
        raise InvalidInput("signature is required")
    try:
        return Signature.from_string(signature)
    except ValueError as exc:
        raise InvalidInput("Invalid transaction signature format") from exc


def validate_amount(amount: Optional[float], maximum: float, field: str = "amount") -> float:
    if amount is None or isinstance(amount, bool):
        raise InvalidInput(f"{field} is required")
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidInput(f"{field} must be a positive number")
    if amount > maximum:
        raise InvalidInput(f"{field} exceeds maximum of {maximum}", maximum=maximum)
    return float(amount)


def serialize_player(player: Optional[Player], wallet_address: str, decimals: int) -> dict:
    if player is None:
        return {
            "walletAddress": wallet_address,
            "totalSpins": 0,
            "totalWon": 0,
            "totalWagered": 0,
            "unclaimedRewards": 0,
            "pendingCollect": 0,
            "spinsRemaining": 0,
            "costPerSpin": 0,
            "createdAt": None,
        }
    return {
        "walletAddress": player.wallet_address,
        "totalSpins": player.total_spins or 0,
        "totalWon": to_display_units(player.total_won, decimals),
        "totalWagered": to_display_units(player.total_wagered, decimals),
        # reserved funds are on their way to the wallet, not collectable again
        "unclaimedRewards": to_display_units(player.unclaimed_rewards - (player.reserved_rewards or 0), decimals),
        "pendingCollect": to_display_units(player.reserved_rewards, decimals),
        "spinsRemaining": player.spins_remaining or 0,
        "costPerSpin": to_display_units(player.cost_per_spin, decimals),
        "createdAt": player.created_at.isoformat() if player.created_at else None,
    }


def serialize_transfer(record: CollectTransfer, decimals: int) -> dict:
    return {
        "id": record.id,
        "signature": record.signature,
        "walletAddress": record.wallet_address,
        "amount": to_display_units(record.amount, decimals),
        "status": record.status,
        "lastValidBlockHeight": record.last_valid_block_height,
        "error": record.error,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "updatedAt": record.updated_at.isoformat() if record.updated_at else None,
    }
