from dataclasses import dataclass
from typing import Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from slot_hub.clients.ledger_client import LedgerClient
from slot_hub.config import Settings, settings
from slot_hub.errors import TreasuryConfigError
from slot_hub.logging_config import get_logger
from slot_hub.rate_limit import InMemoryRateLimitStore, SlidingWindowRateLimiter
from slot_hub.reels import ReelEngine
from slot_hub.transfers import parse_treasury_keypair

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Long-lived handles shared by every request, built once per process."""
    settings: Settings
    ledger: LedgerClient
    rate_limiter: SlidingWindowRateLimiter
    reel_engine: ReelEngine
    treasury: Optional[Keypair] = None
    treasury_error: Optional[str] = None

    @property
    def mint(self) -> Pubkey:
        return Pubkey.from_string(self.settings.token_mint)

    def require_treasury(self) -> Keypair:
        if self.treasury is None:
            raise TreasuryConfigError("Server configuration error", reason=self.treasury_error)
        return self.treasury


def load_treasury(config: Settings) -> tuple[Optional[Keypair], Optional[str]]:
    if not config.treasury_private_key:
        logger.error("TREASURY_PRIVATE_KEY not set; collects are disabled")
        return None, "TREASURY_PRIVATE_KEY environment variable is not set"
    try:
        keypair = parse_treasury_keypair(config.treasury_private_key)
    except ValueError as exc:
        logger.error("Error parsing treasury private key: %s", exc)
        return None, f"Failed to parse treasury private key: {exc}"
    if str(keypair.pubkey()) != config.treasury_wallet:
        logger.error("Treasury keypair %s does not match configured wallet %s", keypair.pubkey(), config.treasury_wallet)
        return None, "Treasury key mismatch"
    return keypair, None


def build_context(config: Settings = settings) -> AppContext:
    treasury, treasury_error = load_treasury(config)
    return AppContext(
        settings=config,
        ledger=LedgerClient.from_settings(config),
        rate_limiter=SlidingWindowRateLimiter(
            InMemoryRateLimitStore(max_entries=config.rate_limit_max_entries),
            limit=config.collect_rate_limit,
            window_seconds=config.rate_limit_window_seconds,
        ),
        reel_engine=ReelEngine(),
        treasury=treasury,
        treasury_error=treasury_error,
    )


_context: Optional[AppContext] = None


def get_context() -> AppContext:
    global _context
    if _context is None:
        _context = build_context()
    return _context


async def close_context() -> None:
    global _context
    if _context is not None:
        await _context.ledger.aclose()
        _context = None
