"""
Runtime configuration for the settlement engine.
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment
load_dotenv()

# Protocol defaults
DEFAULT_TIMELOCK_DELAY = 2 * 60 * 60  # 2 hours between queue and execute
DEFAULT_JOIN_WINDOW = 24 * 60 * 60  # Open games expire after 24 hours
DEFAULT_RESOLVE_GRACE = 6 * 60 * 60  # Signer has 6 hours after join to resolve
DEFAULT_FEE_BPS = 200  # 2% of the pool
DEFAULT_MAX_GAMES_PER_DAY = 50  # 0 disables the daily allowance
DEFAULT_MAX_PAGE_SIZE = 100
DEFAULT_BLOCKHASH_WINDOW = 256  # Blocks whose hash is still retrievable
DEFAULT_SESSION_TTL = 7 * 24 * 60 * 60  # API sessions last 7 days


@dataclass(frozen=True)
class EngineSettings:
    timelock_delay: int = DEFAULT_TIMELOCK_DELAY
    join_window: int = DEFAULT_JOIN_WINDOW
    resolve_grace: int = DEFAULT_RESOLVE_GRACE
    fee_bps: int = DEFAULT_FEE_BPS
    max_games_per_day: int = DEFAULT_MAX_GAMES_PER_DAY
    max_page_size: int = DEFAULT_MAX_PAGE_SIZE
    blockhash_window: int = DEFAULT_BLOCKHASH_WINDOW
    db_path: str = "coinflip_escrow.db"
    owner: Optional[str] = None
    seed_key: Optional[str] = None  # Fernet key for the signer vault
    session_ttl: int = DEFAULT_SESSION_TTL


def load_settings() -> EngineSettings:
    """Build settings from COINFLIP_* environment variables."""
    return EngineSettings(
        timelock_delay=int(os.getenv("COINFLIP_TIMELOCK_DELAY", str(DEFAULT_TIMELOCK_DELAY))),
        join_window=int(os.getenv("COINFLIP_JOIN_WINDOW", str(DEFAULT_JOIN_WINDOW))),
        resolve_grace=int(os.getenv("COINFLIP_RESOLVE_GRACE", str(DEFAULT_RESOLVE_GRACE))),
        fee_bps=int(os.getenv("COINFLIP_FEE_BPS", str(DEFAULT_FEE_BPS))),
        max_games_per_day=int(os.getenv("COINFLIP_MAX_GAMES_PER_DAY", str(DEFAULT_MAX_GAMES_PER_DAY))),
        max_page_size=int(os.getenv("COINFLIP_MAX_PAGE_SIZE", str(DEFAULT_MAX_PAGE_SIZE))),
        blockhash_window=int(os.getenv("COINFLIP_BLOCKHASH_WINDOW", str(DEFAULT_BLOCKHASH_WINDOW))),
        db_path=os.getenv("COINFLIP_DB_PATH", "coinflip_escrow.db"),
        owner=os.getenv("COINFLIP_OWNER"),
        seed_key=os.getenv("COINFLIP_SEED_KEY"),
        session_ttl=int(os.getenv("COINFLIP_SESSION_TTL", str(DEFAULT_SESSION_TTL))),
    )
