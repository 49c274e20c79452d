"""Two-party coinflip wager settlement engine."""
from .constants import NATIVE_ASSET, LAMPORTS_PER_SOL, VERSION
from .config import EngineSettings, load_settings
from .errors import (
    CoinflipError,
    ValidationError,
    StateError,
    PausedError,
    ReentrancyError,
    AuthorizationError,
    TimingError,
    EntropyError,
    PaymentError,
)
from .database import CoinSide, GameState
from .game import Chain, CoinFlipGame, SeedVault

__version__ = VERSION

__all__ = [
    "NATIVE_ASSET",
    "LAMPORTS_PER_SOL",
    "VERSION",
    "EngineSettings",
    "load_settings",
    "CoinflipError",
    "ValidationError",
    "StateError",
    "PausedError",
    "ReentrancyError",
    "AuthorizationError",
    "TimingError",
    "EntropyError",
    "PaymentError",
    "CoinSide",
    "GameState",
    "Chain",
    "CoinFlipGame",
    "SeedVault",
]
