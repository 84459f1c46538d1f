"""
Collect protocol.

A collect never zeroes the player's balance up front. `request_collect`
moves the unclaimed amount into a reservation (compare-and-swap, so only one
request can hold it) and hands back a treasury-signed transfer. The balance is
reduced only once the ledger reports that transfer as confirmed, either via
`confirm_collect` or the reservation sweep. Failed and expired transfers
release the reservation so the player can collect again.
"""
import json
from dataclasses import dataclass
from datetime import timedelta, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy.orm import Session

from slot_hub.config import TransferStatus, commitment_rank
from slot_hub.context import AppContext
from slot_hub.db import (
    compare_and_swap,
    get_player,
    get_transfer,
    record_transfer,
    set_transfer_status,
    utcnow,
)
from slot_hub.errors import (
    AlreadyCollected,
    ConcurrentUpdate,
    InvalidInput,
    PlayerNotFound,
    RateLimited,
    TransferFailed,
)
from slot_hub.helpers import short_address, to_display_units, validate_amount, validate_signature, validate_wallet
from slot_hub.logging_config import get_logger
from slot_hub.models import CollectTransfer, Player
from slot_hub.schemas.app_schemas import CollectRequest, ConfirmCollectRequest
from slot_hub.transfers import prepare_payout

logger = get_logger(__name__)

RELEASED_RESERVATION = {"reserved_rewards": 0, "reserved_signature": None, "reserved_at": None}


class Resolution(str, Enum):
    NONE = "none"
    IN_FLIGHT = "in_flight"
    CLEARED = "cleared"
    ALREADY_CLEARED = "already_cleared"
    FAILED = "failed"
    EXPIRED = "expired"
    RELEASED = "released"


@dataclass
class ResolutionResult:
    resolution: Resolution
    wallet_address: str
    amount: int = 0
    signature: Optional[str] = None
    error: Any = None


def release_reservation(db: Session, settings, wallet_address: str, signature: Optional[str]) -> bool:
    """
    Drop the reservation held for `signature` (None for one whose transfer was
    never issued). `unclaimed_rewards` is untouched, so the full balance is
    collectable again. Returns False if that reservation is no longer there.
    """
    for _ in range(settings.cas_max_attempts):
        player = get_player(db, wallet_address)
        if player is None or player.reserved_rewards == 0 or player.reserved_signature != signature:
            return False
        expected = {"reserved_rewards": player.reserved_rewards, "reserved_signature": signature}
        if compare_and_swap(db, wallet_address, expected, RELEASED_RESERVATION):
            logger.info(
                "Released collect reservation wallet=%s amount=%s signature=%s",
                wallet_address,
                expected["reserved_rewards"],
                signature,
            )
            return True
    raise ConcurrentUpdate("Player record is being updated concurrently, please retry")


def clear_reservation(db: Session, settings, transfer: CollectTransfer) -> bool:
    """
    Book a confirmed transfer: take the reserved amount off the unclaimed
    balance and mark the transfer confirmed in one commit. Returns False when
    the reservation was already cleared by an earlier call.
    """
    for _ in range(settings.cas_max_attempts):
        player = get_player(db, transfer.wallet_address)
        if player is None or player.reserved_signature != transfer.signature or player.reserved_rewards == 0:
            if transfer.status == TransferStatus.PENDING.value:
                set_transfer_status(db, transfer, TransferStatus.CONFIRMED.value)
            return False
        expected = {
            "unclaimed_rewards": player.unclaimed_rewards,
            "reserved_rewards": player.reserved_rewards,
            "reserved_signature": transfer.signature,
        }
        new_values = {"unclaimed_rewards": player.unclaimed_rewards - player.reserved_rewards, **RELEASED_RESERVATION}
        if compare_and_swap(db, transfer.wallet_address, expected, new_values, commit=False):
            set_transfer_status(db, transfer, TransferStatus.CONFIRMED.value, commit=False)
            db.commit()
            logger.info(
                "Cleared unclaimed rewards wallet=%s amount=%s signature=%s",
                transfer.wallet_address,
                expected["reserved_rewards"],
                transfer.signature,
            )
            return True
        # a spin win landed between read and write
        db.rollback()
    raise ConcurrentUpdate("Player record is being updated concurrently, please retry")


async def resolve_transfer(db: Session, ctx: AppContext, transfer: CollectTransfer) -> ResolutionResult:
    settings = ctx.settings
    result = ResolutionResult(Resolution.IN_FLIGHT, transfer.wallet_address, transfer.amount, transfer.signature)
    status = await ctx.ledger.get_signature_status(transfer.signature)

    if not status.found:
        if transfer.last_valid_block_height is not None:
            height = await ctx.ledger.get_block_height()
            if height > transfer.last_valid_block_height:
                result.error = "Transaction expired before it was confirmed"
                release_reservation(db, settings, transfer.wallet_address, transfer.signature)
                set_transfer_status(db, transfer, TransferStatus.EXPIRED.value, result.error)
                logger.warning(
                    "Collect transfer expired wallet=%s signature=%s block_height=%s last_valid=%s",
                    transfer.wallet_address,
                    short_address(transfer.signature),
                    height,
                    transfer.last_valid_block_height,
                )
                result.resolution = Resolution.EXPIRED
        return result

    if status.err is not None:
        result.error = status.err
        release_reservation(db, settings, transfer.wallet_address, transfer.signature)
        set_transfer_status(db, transfer, TransferStatus.FAILED.value, json.dumps(status.err))
        logger.error(
            "Collect transfer failed wallet=%s signature=%s error=%s",
            transfer.wallet_address,
            transfer.signature,
            status.err,
        )
        result.resolution = Resolution.FAILED
        return result

    required = commitment_rank[settings.required_commitment]
    if commitment_rank.get(status.confirmation_status or "", -1) < required:
        return result

    cleared = clear_reservation(db, settings, transfer)
    result.resolution = Resolution.CLEARED if cleared else Resolution.ALREADY_CLEARED
    return result


async def resolve_reservation(db: Session, ctx: AppContext, player: Player) -> ResolutionResult:
    """
    Settle whatever reservation `player` holds against the ledger. Used before
    a new collect and by the sweep for reservations whose confirm never came.
    """
    wallet_address = player.wallet_address
    reserved = player.reserved_rewards
    if not reserved:
        return ResolutionResult(Resolution.NONE, wallet_address)

    signature = player.reserved_signature
    if signature is None:
        reserved_at = player.reserved_at
        if reserved_at is not None and reserved_at.tzinfo is None:
            reserved_at = reserved_at.replace(tzinfo=timezone.utc)
        ttl = timedelta(seconds=ctx.settings.reservation_ttl_seconds)
        if reserved_at is not None and utcnow() - reserved_at < ttl:
            return ResolutionResult(Resolution.IN_FLIGHT, wallet_address, reserved)
        # the transfer was never issued
        release_reservation(db, ctx.settings, wallet_address, None)
        return ResolutionResult(Resolution.RELEASED, wallet_address, reserved)

    transfer = get_transfer(db, signature)
    if transfer is None:
        logger.error("Reservation references unknown transfer wallet=%s signature=%s", wallet_address, signature)
        release_reservation(db, ctx.settings, wallet_address, signature)
        return ResolutionResult(Resolution.RELEASED, wallet_address, reserved, signature)
    return await resolve_transfer(db, ctx, transfer)


async def request_collect(db: Session, ctx: AppContext, request: CollectRequest) -> dict:
    settings = ctx.settings
    recipient = validate_wallet(request.userWallet, field="userWallet")
    claimed = validate_amount(request.amount, settings.max_collect_amount)
    wallet_address = str(recipient)

    if not ctx.rate_limiter.allow(wallet_address):
        logger.warning("Collect rate limited wallet=%s", wallet_address)
        raise RateLimited(
            "Too many collect requests, please wait before trying again",
            retryAfterSeconds=settings.rate_limit_window_seconds,
        )
    treasury = ctx.require_treasury()

    player = get_player(db, wallet_address)
    if player is not None and player.reserved_rewards:
        outcome = await resolve_reservation(db, ctx, player)
        if outcome.resolution == Resolution.IN_FLIGHT:
            raise AlreadyCollected("A collect is already in progress", signature=outcome.signature)
        player = get_player(db, wallet_address)

    if player is None or player.unclaimed_rewards <= 0:
        return {"transaction": None, "actualAmount": 0, "message": "No unclaimed rewards to collect"}

    amount = player.unclaimed_rewards
    actual_amount = to_display_units(amount, settings.token_decimals)
    if abs(actual_amount - claimed) > settings.amount_epsilon:
        logger.warning(
            "Amount mismatch wallet=%s requested=%s ledger=%s, using ledger amount",
            wallet_address,
            claimed,
            actual_amount,
        )

    reserved = compare_and_swap(
        db,
        wallet_address,
        {"unclaimed_rewards": amount, "reserved_rewards": 0},
        {"reserved_rewards": amount, "reserved_signature": None, "reserved_at": utcnow()},
    )
    if not reserved:
        logger.warning("Collect reservation lost to a concurrent request wallet=%s", wallet_address)
        raise AlreadyCollected()
    logger.info("Reserved rewards for collect wallet=%s amount=%s", wallet_address, amount)

    try:
        payout = await prepare_payout(ctx.ledger, treasury, recipient, ctx.mint, amount)
    except Exception:
        release_reservation(db, settings, wallet_address, None)
        raise

    transfer = record_transfer(db, wallet_address, payout.signature, amount, payout.last_valid_block_height)
    attached = compare_and_swap(
        db,
        wallet_address,
        {"reserved_rewards": amount, "reserved_signature": None},
        {"reserved_signature": payout.signature},
    )
    if not attached:
        set_transfer_status(db, transfer, TransferStatus.FAILED.value, "reservation released before issue")
        raise ConcurrentUpdate("Collect reservation expired, please retry")

    logger.info(
        "Issued collect transfer wallet=%s amount=%s signature=%s create_ata=%s",
        wallet_address,
        amount,
        payout.signature,
        payout.create_destination,
    )
    return {"transaction": payout.transaction, "actualAmount": actual_amount, "signature": payout.signature}


async def confirm_collect(db: Session, ctx: AppContext, request: ConfirmCollectRequest) -> tuple[int, dict]:
    """Returns (HTTP status, body); 202 means the transfer has not settled yet."""
    settings = ctx.settings
    wallet_address = str(validate_wallet(request.userWallet, field="userWallet"))
    signature = str(validate_signature(request.signature))
    claimed = validate_amount(request.amount, settings.max_collect_amount)

    if get_player(db, wallet_address) is None:
        raise PlayerNotFound("Player not found")
    transfer = get_transfer(db, signature)
    if transfer is None or transfer.wallet_address != wallet_address:
        raise InvalidInput("Transaction not found for this wallet")

    amount = to_display_units(transfer.amount, settings.token_decimals)
    if abs(amount - claimed) > settings.amount_epsilon:
        logger.warning("Amount mismatch during confirm: expected %s, ledger reserved %s", claimed, amount)

    if transfer.status == TransferStatus.CONFIRMED.value:
        return 200, {"message": "Unclaimed rewards already cleared", "alreadyCleared": True, "amount": amount}
    if transfer.status in (TransferStatus.FAILED.value, TransferStatus.EXPIRED.value):
        raise TransferFailed("Transaction failed", transactionError=transfer.error)

    outcome = await resolve_transfer(db, ctx, transfer)
    if outcome.resolution == Resolution.IN_FLIGHT:
        return 202, {"message": "Transaction still processing", "status": "processing"}
    if outcome.resolution == Resolution.FAILED:
        raise TransferFailed("Transaction failed", transactionError=outcome.error)
    if outcome.resolution == Resolution.EXPIRED:
        raise TransferFailed(outcome.error)
    if outcome.resolution == Resolution.ALREADY_CLEARED:
        logger.warning("Unclaimed rewards already cleared for wallet: %s", wallet_address)
        return 200, {"message": "Unclaimed rewards already cleared", "alreadyCleared": True, "amount": amount}
    return 200, {"message": "Unclaimed rewards cleared successfully", "amount": amount, "cleared": True}
