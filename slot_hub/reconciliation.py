import csv
from io import StringIO
from typing import List, Tuple

from sqlalchemy.orm import Session

from slot_hub.collect import Resolution, ResolutionResult, resolve_reservation
from slot_hub.context import AppContext
from slot_hub.db import list_reservations
from slot_hub.errors import LedgerRPCError, LedgerUnavailable
from slot_hub.helpers import to_display_units
from slot_hub.logging_config import get_logger

logger = get_logger(__name__)


async def sweep_reservations(db: Session, ctx: AppContext) -> List[ResolutionResult]:
    """
    Settle every outstanding collect reservation against the ledger. This is
    the recovery path for clients that submitted a transfer and never called
    confirm: confirmed transfers are booked, failed or expired ones released.
    """
    results: List[ResolutionResult] = []
    for player in list_reservations(db):
        try:
            result = await resolve_reservation(db, ctx, player)
        except (LedgerUnavailable, LedgerRPCError) as exc:
            logger.warning("Could not resolve reservation wallet=%s error=%s", player.wallet_address, exc)
            result = ResolutionResult(
                Resolution.IN_FLIGHT,
                player.wallet_address,
                player.reserved_rewards,
                player.reserved_signature,
                error=str(exc),
            )
        results.append(result)
    in_flight = sum(1 for r in results if r.resolution == Resolution.IN_FLIGHT)
    logger.info("Reservation sweep complete: checked=%s still_in_flight=%s", len(results), in_flight)
    return results


def serialize_resolution(result: ResolutionResult, decimals: int) -> dict:
    return {
        "walletAddress": result.wallet_address,
        "signature": result.signature,
        "amount": to_display_units(result.amount, decimals),
        "resolution": result.resolution.value,
        "error": result.error if result.error is None or isinstance(result.error, str) else str(result.error),
    }


def generate_reconciliation_csv(results: List[ResolutionResult], decimals: int) -> Tuple[str, int]:
    """
    Render sweep results as CSV text plus the number of reservations still in flight.
    """
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["walletAddress", "signature", "amount", "resolution", "error"])
    for result in results:
        row = serialize_resolution(result, decimals)
        writer.writerow([row["walletAddress"], row["signature"] or "", row["amount"], row["resolution"], row["error"] or ""])
    in_flight = sum(1 for r in results if r.resolution == Resolution.IN_FLIGHT)
    return output.getvalue(), in_flight
