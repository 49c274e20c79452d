"""
Resolution paths and the shared finalize step.

A game in RESOLVING is settled either by the trusted signer revealing the
committed epoch secret, or by the signer's emergency override. Both paths only
decide the winning side; booking the fee and payout always goes through
`finalize`, which is the last thing that touches the game.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ..database.models import CoinSide, Game, GameState, RngSnapshot
from ..errors import StateError, TimingError
from .fees import FeeAccumulator, split_pool
from .escrow import StakeLedger
from .randomness import EntropySource, EpochStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignerResolution:
    """Resolve with the revealed epoch secret."""
    reveal: bytes


@dataclass(frozen=True)
class EmergencyResolution:
    """Signer override for a stuck game; skips timing and reveal checks."""
    side: CoinSide


Resolution = Union[SignerResolution, EmergencyResolution]


@dataclass(frozen=True)
class Settlement:
    """Outcome of a finalized game."""
    game_id: int
    asset: str
    winning_side: CoinSide
    winner: str
    fee: int
    payout: int
    entropy: Optional[str] = None  # External value mixed in, signer path only


class ResolutionEngine:
    """Derives the winning side for a game in RESOLVING."""

    def __init__(self, chain, epochs: EpochStore, source: EntropySource):
        self.chain = chain
        self.epochs = epochs
        self.source = source

    def external_entropy(self, target_block: int) -> str:
        """Hash of the target block, or the previous block if it aged out."""
        blockhash = self.chain.blockhash(target_block)
        if blockhash is None:
            blockhash = self.chain.blockhash(self.chain.block_number - 1)
            logger.warning(f"[RESOLVE] Target block {target_block} hash unavailable, using fallback")
        return blockhash

    def winning_side(
        self,
        game: Game,
        rng: Optional[RngSnapshot],
        resolution: Resolution,
    ) -> Tuple[CoinSide, Optional[str]]:
        """Pick the winning side for a resolution path.

        Args:
            game: Game in RESOLVING
            rng: Snapshot taken at join
            resolution: Signer or emergency resolution

        Returns:
            Tuple of (winning side, external entropy used or None)

        Raises:
            TimingError: Grace expired or target block not yet reached
            EntropyError: Missing commitment or reveal mismatch
        """
        if isinstance(resolution, EmergencyResolution):
            return resolution.side, None

        if rng is None:
            raise StateError("no rng")
        now = self.chain.timestamp
        if now > game.resolve_deadline:
            raise TimingError("grace expired")
        if self.chain.block_number <= rng.target_block:
            raise TimingError("too early")

        self.epochs.verify_reveal(rng.epoch, resolution.reveal)

        external = self.external_entropy(rng.target_block)
        return self.source.outcome(resolution.reveal, rng.seed, external), external


def finalize(
    game: Game,
    winning_side: CoinSide,
    fees: FeeAccumulator,
    ledger: StakeLedger,
    entropy: Optional[str] = None,
) -> Settlement:
    """Book fee and payout for a game and mark it RESOLVED.

    Only reachable from RESOLVING, and the state flip is the final write, so a
    game can be finalized at most once.
    """
    if game.state is not GameState.RESOLVING:
        raise StateError("bad state")

    winner = game.creator if winning_side is game.creator_side else game.joiner
    fee, payout = split_pool(game.pool, fees.fee_bps)

    fees.accrue(game.asset, fee)
    ledger.credit(winner, game.asset, payout)
    game.pool = 0
    game.winner = winner
    game.state = GameState.RESOLVED

    logger.info(f"[RESOLVE] Game {game.game_id}: {winning_side.name} wins, {winner} gets {payout} (fee {fee})")
    return Settlement(
        game_id=game.game_id,
        asset=game.asset,
        winning_side=winning_side,
        winner=winner,
        fee=fee,
        payout=payout,
        entropy=entropy,
    )
