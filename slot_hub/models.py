from sqlalchemy import JSON, BigInteger, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from slot_hub.database import Base


class Player(Base):
    __tablename__ = "players"
    wallet_address = Column(String, primary_key=True)
    total_spins = Column(Integer, nullable=False, default=0)
    total_wagered = Column(BigInteger, nullable=False, default=0)
    total_won = Column(BigInteger, nullable=False, default=0)
    unclaimed_rewards = Column(BigInteger, nullable=False, default=0)
    spins_remaining = Column(Integer, nullable=False, default=0)
    cost_per_spin = Column(BigInteger, nullable=False, default=0)
    # in-flight collect: amount handed to a signed transfer, not yet confirmed
    reserved_rewards = Column(BigInteger, nullable=False, default=0)
    reserved_signature = Column(String, nullable=True)
    reserved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())


class GameHistory(Base):
    __tablename__ = "game_history"
    id = Column(Integer, primary_key=True)
    wallet_address = Column(String, index=True, nullable=False)
    spin_cost = Column(BigInteger, nullable=False)
    result_symbols = Column(JSON, nullable=False)
    won_amount = Column(BigInteger, nullable=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())


class CollectTransfer(Base):
    __tablename__ = "collect_transfers"
    id = Column(Integer, primary_key=True)
    signature = Column(String, unique=True, index=True, nullable=False)
    wallet_address = Column(String, index=True, nullable=False)
    amount = Column(BigInteger, nullable=False)
    status = Column(String, nullable=False, default="pending")
    last_valid_block_height = Column(BigInteger, nullable=True)
    error = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
