import asyncio
import json
import os
import random
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# slot_hub.main creates tables on import; keep that away from the working tree.
os.environ.setdefault("DB_URL", f"sqlite:///{Path(tempfile.mkdtemp()) / 'import.db'}")

from solders.hash import Hash
from solders.keypair import Keypair

from slot_hub.clients.ledger_client import LatestBlockhash, SignatureStatus
from slot_hub.config import Settings
from slot_hub.context import AppContext, load_treasury
from slot_hub.database import Base
from slot_hub.db import get_or_create_player
from slot_hub.models import Player
from slot_hub.rate_limit import InMemoryRateLimitStore, SlidingWindowRateLimiter
from slot_hub.reels import ReelEngine
from slot_hub.transfers import derive_ata

TREASURY_FUNDS = 1_000_000_000_000
BLOCKHASH_VALIDITY = 150


class FakeLedger:
    """
    In-memory stand-in for LedgerClient. Every call yields to the event loop
    once so concurrent requests interleave the way they would over the network.
    """

    def __init__(self):
        self.accounts = set()
        self.balances = {}
        self.statuses = {}
        self.block_height = 1000
        self.closed = False

    async def account_exists(self, address):
        await asyncio.sleep(0)
        return address in self.accounts

    async def get_token_balance(self, token_account):
        await asyncio.sleep(0)
        return self.balances.get(token_account)

    async def get_latest_blockhash(self):
        await asyncio.sleep(0)
        return LatestBlockhash(str(Hash.new_unique()), self.block_height + BLOCKHASH_VALIDITY)

    async def get_block_height(self):
        await asyncio.sleep(0)
        return self.block_height

    async def get_signature_status(self, signature):
        await asyncio.sleep(0)
        return self.statuses.get(signature, SignatureStatus(found=False))

    async def aclose(self):
        self.closed = True

    def confirm(self, signature, commitment="confirmed"):
        self.statuses[signature] = SignatureStatus(found=True, confirmation_status=commitment, slot=self.block_height)

    def fail(self, signature, err):
        self.statuses[signature] = SignatureStatus(found=True, confirmation_status="confirmed", err=err)


@pytest.fixture
def treasury():
    return Keypair()


@pytest.fixture
def mint():
    return Keypair().pubkey()


@pytest.fixture
def settings(tmp_path, treasury, mint):
    return Settings(
        _env_file=None,
        db_url=f"sqlite:///{tmp_path / 'test.db'}",
        solana_rpc_url="http://mock-ledger:8003/",
        token_mint=str(mint),
        treasury_wallet=str(treasury.pubkey()),
        treasury_private_key=json.dumps(list(bytes(treasury))),
        bearer_token="testtoken",
    )


@pytest.fixture
def session_factory(settings):
    engine = create_engine(settings.db_url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ledger(treasury, mint):
    fake = FakeLedger()
    fake.balances[str(derive_ata(treasury.pubkey(), mint))] = TREASURY_FUNDS
    return fake


@pytest.fixture
def ctx(settings, ledger):
    keypair, error = load_treasury(settings)
    return AppContext(
        settings=settings,
        ledger=ledger,
        rate_limiter=SlidingWindowRateLimiter(
            InMemoryRateLimitStore(max_entries=settings.rate_limit_max_entries),
            limit=settings.collect_rate_limit,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        reel_engine=ReelEngine(rng=random.Random(7)),
        treasury=keypair,
        treasury_error=error,
    )


@pytest.fixture
def make_player(db):
    """
    Create a player and set ledger columns directly (minor units). Returns the
    wallet address.
    """

    def _make(wallet_address=None, **values):
        wallet_address = wallet_address or str(Keypair().pubkey())
        get_or_create_player(db, wallet_address)
        if values:
            db.query(Player).filter(Player.wallet_address == wallet_address).update(values)
            db.commit()
        return wallet_address

    return _make


@pytest.fixture
def app_module():
    import slot_hub.main as main

    # The real context would open an RPC client; tests inject their own.
    main.app.router.on_startup.clear()
    main.app.router.on_shutdown.clear()
    return main


@pytest.fixture
def client(app_module, session_factory, ctx):
    main = app_module

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[main.get_db] = override_get_db
    main.app.dependency_overrides[main.get_context] = lambda: ctx
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer testtoken"}
