from dataclasses import dataclass
from typing import Callable, List

from sqlalchemy.orm import Session

from slot_hub.config import Settings
from slot_hub.db import compare_and_swap, get_or_create_player, get_player, insert_history, snapshot
from slot_hub.errors import ConcurrentUpdate, InvalidInput, NoSpinsRemaining, PurchaseConflict
from slot_hub.helpers import to_display_units, to_minor_units, validate_amount, validate_wallet
from slot_hub.logging_config import get_logger
from slot_hub.models import Player
from slot_hub.reels import REEL_COUNT, SYMBOL_NAMES, payout_for
from slot_hub.schemas.app_schemas import SaveGameRequest

logger = get_logger(__name__)


@dataclass
class SpinRecord:
    player: Player
    stake: int
    payout: int


def _update_with_retry(db: Session, settings: Settings, wallet_address: str, mutate: Callable[[Player], dict]):
    """
    Read the player, let `mutate` compute new column values from that read and
    write them with compare-and-swap. Lost races re-read and try again.
    Returns (values read, values written, player after the write).
    """
    for attempt in range(1, settings.cas_max_attempts + 1):
        player = get_or_create_player(db, wallet_address)
        expected = snapshot(player)
        new_values = mutate(player)
        if compare_and_swap(db, wallet_address, expected, new_values):
            return expected, new_values, get_player(db, wallet_address)
        logger.info("Ledger write lost a race, retrying wallet=%s attempt=%s", wallet_address, attempt)
    raise ConcurrentUpdate("Player record is being updated concurrently, please retry")


def apply_purchase(db: Session, settings: Settings, wallet_address: str, spins: int, spin_cost: float) -> Player:
    if spins < 1 or spins > settings.max_spins_per_purchase:
        raise InvalidInput(f"spinsPurchased must be between 1 and {settings.max_spins_per_purchase}")
    validate_amount(spin_cost, settings.max_cost_per_spin, field="spinCost")
    if spins * spin_cost > settings.max_total_cost:
        raise InvalidInput(f"Total cost exceeds maximum of {settings.max_total_cost}")
    cost_units = to_minor_units(spin_cost, settings.token_decimals)
    if cost_units <= 0:
        raise InvalidInput("spinCost must be a positive number")

    def mutate(player: Player) -> dict:
        # wager accounting uses one stored cost for every outstanding credit
        if player.spins_remaining > 0:
            raise PurchaseConflict(
                "Use your remaining spins before purchasing more",
                spinsRemaining=player.spins_remaining,
                costPerSpin=to_display_units(player.cost_per_spin, settings.token_decimals),
            )
        return {"spins_remaining": spins, "cost_per_spin": cost_units}

    _, _, player = _update_with_retry(db, settings, wallet_address, mutate)
    logger.info("Recorded spin purchase wallet=%s spins=%s cost_per_spin=%s", wallet_address, spins, cost_units)
    return player


def validate_symbols(symbols: List[int]) -> List[int]:
    if len(symbols) != REEL_COUNT or any(s < 0 or s >= len(SYMBOL_NAMES) for s in symbols):
        raise InvalidInput(f"resultSymbols must be {REEL_COUNT} symbol indexes between 0 and {len(SYMBOL_NAMES) - 1}")
    return list(symbols)


def apply_spin(db: Session, settings: Settings, wallet_address: str, symbols: List[int]) -> SpinRecord:
    """
    Spend one credit and book the spin. The stake is the stored cost per spin
    and the win is priced from the paytable, never taken from the caller.
    """
    symbols = validate_symbols(symbols)

    def mutate(player: Player) -> dict:
        if player.spins_remaining <= 0:
            raise NoSpinsRemaining("No spins remaining", spinsRemaining=0)
        stake = player.cost_per_spin
        win = payout_for(symbols, stake)
        return {
            "spins_remaining": player.spins_remaining - 1,
            "total_spins": player.total_spins + 1,
            "total_wagered": player.total_wagered + stake,
            "total_won": player.total_won + win,
            "unclaimed_rewards": player.unclaimed_rewards + win,
        }

    before, after, player = _update_with_retry(db, settings, wallet_address, mutate)
    stake = before["cost_per_spin"]
    payout = after["total_won"] - before["total_won"]
    insert_history(db, wallet_address, stake, symbols, payout)
    if payout:
        logger.info("Spin win wallet=%s symbols=%s stake=%s payout=%s", wallet_address, symbols, stake, payout)
    return SpinRecord(player=player, stake=stake, payout=payout)


def save_game(db: Session, settings: Settings, request: SaveGameRequest) -> Player:
    wallet_address = str(validate_wallet(request.walletAddress))
    if request.updateUnclaimedRewards is not None:
        logger.warning(
            "Ignoring client unclaimed rewards override wallet=%s value=%s",
            wallet_address,
            request.updateUnclaimedRewards,
        )
    if request.updateSpinsRemaining is not None:
        logger.info(
            "Ignoring client spins remaining value wallet=%s value=%s",
            wallet_address,
            request.updateSpinsRemaining,
        )

    player = None
    if request.spinsPurchased:
        player = apply_purchase(db, settings, wallet_address, request.spinsPurchased, request.spinCost)
    if request.resultSymbols:
        record = apply_spin(db, settings, wallet_address, request.resultSymbols)
        claimed = to_minor_units(request.wonAmount or 0, settings.token_decimals)
        if claimed != record.payout:
            logger.warning(
                "Client win amount mismatch wallet=%s claimed=%s booked=%s",
                wallet_address,
                claimed,
                record.payout,
            )
        player = record.player
    return player or get_or_create_player(db, wallet_address)
