"""
Data models for the settlement engine.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from enum import Enum


class GameState(Enum):
    """Lifecycle state of a wager."""
    CREATED = 0     # Waiting for a joiner
    RESOLVING = 1   # Both stakes escrowed, waiting for the signer
    RESOLVED = 2    # Winner booked, pool released
    CANCELLED = 3   # Cancelled by creator or refunded after grace


class CoinSide(Enum):
    """Side of the coin."""
    HEADS = 0
    TAILS = 1

    @property
    def opposite(self) -> "CoinSide":
        return CoinSide.TAILS if self is CoinSide.HEADS else CoinSide.HEADS


@dataclass
class Game:
    """One two-party wager."""
    game_id: int
    creator: str
    asset: str
    stake: int
    creator_side: CoinSide

    joiner: Optional[str] = None
    state: GameState = GameState.CREATED
    winner: Optional[str] = None

    # Escrowed value not yet released
    pool: int = 0

    # Unix timestamps
    created_at: int = 0
    resolve_deadline: int = 0

    @property
    def joiner_side(self) -> CoinSide:
        return self.creator_side.opposite


@dataclass(frozen=True)
class RngSnapshot:
    """Randomness parameters fixed when the game was joined.

    Kept apart from Game so resolution never depends on mutable game fields.
    """
    seed: str           # sha256 hex over game identity and participants
    target_block: int   # First block whose hash is unknown at join time
    epoch: int          # Epoch whose commitment must be revealed


@dataclass(frozen=True)
class Event:
    """An emitted engine event."""
    event_type: str
    args: Dict[str, Any] = field(default_factory=dict)
    block: int = 0
    timestamp: int = 0
    severity: str = "info"
