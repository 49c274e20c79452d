"""
Game registry: storage for games, RNG snapshots and daily play counters.
"""
import dataclasses
import logging
from typing import Dict, List, Optional, Tuple

from ..database.models import Game, GameState, CoinSide, RngSnapshot
from ..errors import StateError, ValidationError
from ..security.guard import Revertible

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class GameRegistry(Revertible):
    """Games by sequential id plus their RNG snapshots."""

    _revertible = ("next_id", "counters")

    def __init__(self):
        self.games: Dict[int, Game] = {}
        self.rng: Dict[int, RngSnapshot] = {}
        self.next_id = 0
        self.daily_plays: Dict[Tuple[str, int], int] = {}  # (identity, day) -> games
        self.counters: Dict[str, int] = {"cancelled": 0, "refunded": 0, "resolved": 0}

    def create(self, creator: str, asset: str, stake: int, side: CoinSide, now: int) -> Game:
        """Store a new CREATED game under the next id."""
        game = Game(
            game_id=self.next_id,
            creator=creator,
            asset=asset,
            stake=stake,
            creator_side=side,
            pool=stake,
            created_at=now,
        )
        self._put(self.games, game.game_id, game)
        self.next_id += 1
        return game

    def get(self, game_id: int) -> Game:
        """Live game record. Only the engine mutates it.

        Inside a call the game's current fields are journaled first, so only
        games a call actually touches are copied.

        Raises:
            StateError: If the id was never assigned
        """
        game = self.games.get(game_id)
        if game is None:
            raise StateError("unknown game")
        self._record(self.games, game_id, dataclasses.replace(game))
        return game

    def copy_of(self, game_id: int) -> Game:
        """Detached copy of a game for callers outside the engine."""
        return dataclasses.replace(self.get(game_id))

    @staticmethod
    def require_state(game: Game, expected: GameState):
        if game.state is not expected:
            raise StateError("bad state")

    def set_rng(self, game_id: int, snapshot: RngSnapshot):
        if game_id in self.rng:
            raise StateError("rng set")
        self._put(self.rng, game_id, snapshot)

    def rng_of(self, game_id: int) -> Optional[RngSnapshot]:
        return self.rng.get(game_id)

    def list(self, start: int, count: int, max_page: int) -> List[Game]:
        """A page of games by id. Empty if start is past the last id."""
        if start < 0 or count <= 0 or start >= self.next_id:
            return []
        end = min(self.next_id, start + min(count, max_page))
        return [dataclasses.replace(self.games[i]) for i in range(start, end)]

    # === Daily allowance ===

    def record_play(self, identity: str, now: int, max_per_day: int):
        """Count a create or join against the identity's daily allowance.

        Raises:
            ValidationError: If the identity already used today's allowance
        """
        day = now // SECONDS_PER_DAY
        played = self.daily_plays.get((identity, day), 0)
        if max_per_day and played >= max_per_day:
            logger.warning(f"[GAME] Daily limit reached for {identity} ({played}/{max_per_day})")
            raise ValidationError("daily limit")
        self._put(self.daily_plays, (identity, day), played + 1)

    def daily_stats(self, identity: str, now: int, max_per_day: int) -> Tuple[int, int, int, int]:
        """(played today, max per day, remaining, next reset timestamp).

        With no limit configured, max and remaining are reported as 0.
        """
        day = now // SECONDS_PER_DAY
        played = self.daily_plays.get((identity, day), 0)
        remaining = max(max_per_day - played, 0) if max_per_day else 0
        return played, max_per_day, remaining, (day + 1) * SECONDS_PER_DAY

    def bump(self, counter: str):
        self.counters[counter] = self.counters.get(counter, 0) + 1

    def open_pools(self, asset: str) -> int:
        """Value still escrowed in unsettled games for an asset."""
        return sum(g.pool for g in self.games.values() if g.asset == asset)
