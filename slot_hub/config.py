from enum import Enum
from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    db_url: str = "sqlite:///./slots.db"
    solana_rpc_url: AnyHttpUrl = "https://api.mainnet-beta.solana.com"
    token_mint: str = "HVSruatutKcgpZJXYyeRCWAnyT7mzYq1io9YoJ6F4yMP"
    treasury_wallet: str = "5eZ3Qt1jKCGdXkCES791W68T87bGG62j9ZHcmBaMUtTP"
    treasury_private_key: Optional[str] = None
    token_decimals: int = 6
    bearer_token: Optional[str] = None

    max_collect_amount: int = 10_000_000
    amount_epsilon: float = 0.000001
    collect_rate_limit: int = 5
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_entries: int = 10_000

    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    rpc_timeout_seconds: float = 10.0
    required_commitment: str = "confirmed"
    reservation_ttl_seconds: int = 120
    cas_max_attempts: int = 5

    max_cost_per_spin: int = 10_000
    max_spins_per_purchase: int = 100
    max_total_cost: int = 1_000_000
    leaderboard_max_limit: int = 1000

settings = Settings()


class Commitment(str, Enum):
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

commitment_rank = {
    Commitment.PROCESSED.value: 0,
    Commitment.CONFIRMED.value: 1,
    Commitment.FINALIZED.value: 2,
}


class TransferStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"
