from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from slot_hub.logging_config import get_logger
from slot_hub.models import CollectTransfer, GameHistory, Player

logger = get_logger(__name__)

# columns compared by compare_and_swap when a caller passes a full snapshot
LEDGER_FIELDS = (
    "total_spins",
    "total_wagered",
    "total_won",
    "unclaimed_rewards",
    "spins_remaining",
    "cost_per_spin",
    "reserved_rewards",
    "reserved_signature",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_player(db: Session, wallet_address: str) -> Optional[Player]:
    return (
        db.query(Player)
        .filter(Player.wallet_address == wallet_address)
        .populate_existing()
        .first()
    )


def snapshot(player: Player) -> dict:
    return {field: getattr(player, field) for field in LEDGER_FIELDS}


def compare_and_swap(
    db: Session,
    wallet_address: str,
    expected: dict[str, Any],
    new_values: dict[str, Any],
    commit: bool = True,
) -> int:
    """
    Write `new_values` to the player only if every column named in `expected`
    still holds the value last read. Returns the number of rows affected; zero
    means another request changed the record first.
    """
    query = db.query(Player).filter(Player.wallet_address == wallet_address)
    for field, value in expected.items():
        column = getattr(Player, field)
        query = query.filter(column.is_(None) if value is None else column == value)
    rows = query.update({**new_values, "updated_at": utcnow()}, synchronize_session=False)
    if commit:
        db.commit()
    return rows


def insert_player(db: Session, wallet_address: str) -> Player:
    """
    Insert a first-time player with zero baselines. A concurrent insert of the
    same wallet loses on the primary key and the winner's row is returned.
    """
    now = utcnow()
    player = Player(
        wallet_address=wallet_address,
        total_spins=0,
        total_wagered=0,
        total_won=0,
        unclaimed_rewards=0,
        spins_remaining=0,
        cost_per_spin=0,
        reserved_rewards=0,
        created_at=now,
        updated_at=now,
    )
    db.add(player)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Player inserted concurrently, re-reading wallet=%s", wallet_address)
        return get_player(db, wallet_address)
    db.refresh(player)
    logger.info("Created player record wallet=%s", wallet_address)
    return player


def get_or_create_player(db: Session, wallet_address: str) -> Player:
    return get_player(db, wallet_address) or insert_player(db, wallet_address)


def insert_history(db: Session, wallet_address: str, spin_cost: int, result_symbols: list, won_amount: int) -> bool:
    """
    Append a spin to the audit log. Failures are logged and reported as False;
    they never reach the caller as an exception.
    """
    try:
        db.add(
            GameHistory(
                wallet_address=wallet_address,
                spin_cost=spin_cost,
                result_symbols=result_symbols,
                won_amount=won_amount,
                timestamp=utcnow(),
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error saving game history wallet=%s error=%s", wallet_address, exc)
        return False
    return True


def list_reservations(db: Session) -> List[Player]:
    return db.query(Player).filter(Player.reserved_rewards > 0).all()


def record_transfer(
    db: Session,
    wallet_address: str,
    signature: str,
    amount: int,
    last_valid_block_height: Optional[int],
) -> CollectTransfer:
    now = utcnow()
    record = CollectTransfer(
        signature=signature,
        wallet_address=wallet_address,
        amount=amount,
        status="pending",
        last_valid_block_height=last_valid_block_height,
        created_at=now,
        updated_at=now,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def get_transfer(db: Session, signature: str) -> Optional[CollectTransfer]:
    return (
        db.query(CollectTransfer)
        .filter(CollectTransfer.signature == signature)
        .populate_existing()
        .first()
    )


def set_transfer_status(
    db: Session,
    record: CollectTransfer,
    status: str,
    error: Optional[str] = None,
    commit: bool = True,
) -> CollectTransfer:
    record.status = status
    record.error = error
    record.updated_at = utcnow()
    db.add(record)
    if commit:
        db.commit()
    return record


def list_transfers(db: Session, status: Optional[str], limit: int) -> List[CollectTransfer]:
    query = db.query(CollectTransfer)
    if status:
        query = query.filter(CollectTransfer.status == status)
    return query.order_by(CollectTransfer.created_at.desc()).limit(limit).all()
