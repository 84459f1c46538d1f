import pytest
from sqlalchemy.exc import SQLAlchemyError

from slot_hub.db import get_player, insert_history, insert_player
from slot_hub.errors import ConcurrentUpdate, InvalidInput, NoSpinsRemaining, PurchaseConflict
from slot_hub.helpers import to_display_units, to_minor_units
from slot_hub.ledger import apply_purchase, apply_spin, save_game
from slot_hub.models import GameHistory
from slot_hub.schemas.app_schemas import SaveGameRequest


def test_minor_unit_conversion_truncates():
    assert to_minor_units(250.5, 6) == 250_500_000
    assert to_minor_units(0.1234567, 6) == 123_456
    assert to_display_units(5_000_000, 6) == 5.0
    assert to_display_units(None, 6) == 0


def test_purchase_then_spin_books_paytable_win(db, settings, make_player):
    wallet = make_player()
    apply_purchase(db, settings, wallet, spins=3, spin_cost=2)

    record = apply_spin(db, settings, wallet, [2, 2, 2])

    assert record.stake == 2_000_000
    assert record.payout == 21 * 2_000_000
    player = get_player(db, wallet)
    assert player.spins_remaining == 2
    assert player.total_spins == 1
    assert player.total_wagered == 2_000_000
    assert player.total_won == record.payout
    assert player.unclaimed_rewards == record.payout


def test_losing_spin_still_spends_credit(db, settings, make_player):
    wallet = make_player()
    apply_purchase(db, settings, wallet, spins=1, spin_cost=1)

    record = apply_spin(db, settings, wallet, [0, 0, 1])

    assert record.payout == 0
    player = get_player(db, wallet)
    assert player.spins_remaining == 0
    assert player.unclaimed_rewards == 0
    with pytest.raises(NoSpinsRemaining):
        apply_spin(db, settings, wallet, [0, 0, 0])


def test_purchase_blocked_until_spins_used(db, settings, make_player):
    wallet = make_player()
    apply_purchase(db, settings, wallet, spins=1, spin_cost=1)

    with pytest.raises(PurchaseConflict):
        apply_purchase(db, settings, wallet, spins=1, spin_cost=5)

    apply_spin(db, settings, wallet, [3, 4, 5])
    apply_purchase(db, settings, wallet, spins=1, spin_cost=5)
    assert get_player(db, wallet).cost_per_spin == 5_000_000


@pytest.mark.parametrize("symbols", [[0, 0], [0, 0, 0, 0], [8, 8, 8], [-1, 0, 0]])
def test_spin_rejects_malformed_symbols(db, settings, make_player, symbols):
    wallet = make_player(spins_remaining=1, cost_per_spin=1_000_000)
    with pytest.raises(InvalidInput):
        apply_spin(db, settings, wallet, symbols)
    assert get_player(db, wallet).spins_remaining == 1


def test_spin_gives_up_after_repeated_lost_races(db, settings, make_player, monkeypatch):
    wallet = make_player(spins_remaining=1, cost_per_spin=1_000_000)
    calls = {"count": 0}

    def always_stale(*args, **kwargs):
        calls["count"] += 1
        return 0

    monkeypatch.setattr("slot_hub.ledger.compare_and_swap", always_stale)
    with pytest.raises(ConcurrentUpdate):
        apply_spin(db, settings, wallet, [1, 1, 1])
    assert calls["count"] == settings.cas_max_attempts


def test_save_game_ignores_client_balances(db, settings, make_player):
    wallet = make_player(unclaimed_rewards=1_000_000)
    request = SaveGameRequest(
        walletAddress=wallet,
        updateUnclaimedRewards=999999,
        updateSpinsRemaining=40,
    )

    player = save_game(db, settings, request)

    assert player.unclaimed_rewards == 1_000_000
    assert player.spins_remaining == 0


def test_save_game_creates_player(db, settings):
    wallet = "11111111111111111111111111111112"
    player = save_game(db, settings, SaveGameRequest(walletAddress=wallet))
    assert player.wallet_address == wallet
    assert player.total_spins == 0


def test_insert_player_race_returns_existing_row(db, session_factory):
    wallet = "11111111111111111111111111111112"
    with session_factory() as other:
        insert_player(other, wallet)
    player = insert_player(db, wallet)
    assert player.wallet_address == wallet


def test_history_write_failure_is_logged_not_raised(db, monkeypatch, caplog):
    def broken_commit():
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(db, "commit", broken_commit)
    assert insert_history(db, "wallet", 1, [0, 0, 0], 13) is False
    assert "Error saving game history" in caplog.text
    monkeypatch.undo()
    assert db.query(GameHistory).count() == 0
