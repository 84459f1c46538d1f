from typing import Literal

from sqlalchemy import func
from sqlalchemy.orm import Session

from slot_hub.helpers import short_address, to_display_units
from slot_hub.models import Player

SortBy = Literal["spins", "won", "winRate"]


def leaderboard(db: Session, sort_by: SortBy, limit: int, decimals: int) -> dict:
    """
    Rank players who have spun at least once. Win rate (won / wagered) has no
    column to order by, so that ranking is computed over every active player.
    """
    query = db.query(Player).filter(Player.total_spins > 0)
    if sort_by == "spins":
        query = query.order_by(Player.total_spins.desc()).limit(limit)
    elif sort_by == "won":
        query = query.order_by(Player.total_won.desc()).limit(limit)
    players = query.all()

    rows = []
    for player in players:
        total_won = to_display_units(player.total_won, decimals)
        total_wagered = to_display_units(player.total_wagered, decimals)
        rows.append({
            "walletAddress": player.wallet_address,
            "displayAddress": short_address(player.wallet_address),
            "totalSpins": player.total_spins or 0,
            "totalWon": total_won,
            "totalWagered": total_wagered,
            "winRate": (total_won / total_wagered) * 100 if total_wagered > 0 else 0,
            "createdAt": player.created_at.isoformat() if player.created_at else None,
        })
    if sort_by == "winRate":
        rows.sort(key=lambda row: row["winRate"], reverse=True)
        rows = rows[:limit]
    return {"leaderboard": rows, "sortBy": sort_by, "totalPlayers": len(rows)}


def game_stats(db: Session, decimals: int) -> dict:
    total_players, spins, won, wagered = db.query(
        func.count(Player.wallet_address),
        func.coalesce(func.sum(Player.total_spins), 0),
        func.coalesce(func.sum(Player.total_won), 0),
        func.coalesce(func.sum(Player.total_wagered), 0),
    ).one()
    return {
        "grandTotalSpins": int(spins),
        "grandTotalWon": to_display_units(won, decimals),
        "grandTotalWagered": to_display_units(wagered, decimals),
        "totalPlayers": int(total_players),
    }
