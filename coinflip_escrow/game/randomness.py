"""
Commit-reveal randomness for coin flips.

The signer commits to sha256(secret) for an epoch before any game that will
use it is joined. At resolution it reveals the secret, which is mixed with the
game seed and the hash of a block that did not exist when the game was joined.
Neither the signer nor the players can know the outcome at join time.
"""
import hashlib
import logging
from typing import Dict, Optional

import base58

from ..database.models import CoinSide, RngSnapshot
from ..errors import EntropyError, StateError, ValidationError
from ..security.audit import EventType
from ..security.guard import Revertible
from ..utils.validation import is_valid_commitment

logger = logging.getLogger(__name__)

REVEAL_BYTES = 32


def commitment_for(reveal: bytes) -> str:
    """Commitment published for a secret: sha256(reveal) as hex."""
    return hashlib.sha256(reveal).hexdigest()


def derive_seed(game_id: int, creator: str, joiner: str, asset: str, stake: int) -> str:
    """Per-game mixing seed, fixed at join time.

    Args:
        game_id: Game ID
        creator: Creator identity
        joiner: Joiner identity
        asset: Wagered asset
        stake: Per-player stake

    Returns:
        sha256 hex digest
    """
    material = f"{game_id}:{creator}:{joiner}:{asset}:{stake}"
    return hashlib.sha256(material.encode()).hexdigest()


class EntropySource:
    """Turns (committed secret, game seed, external value) into a coin side.

    Subclass to plug in a different randomness source without touching the
    game state machine.
    """

    name = "abstract"

    def outcome(self, reveal: bytes, seed: str, external: str) -> CoinSide:
        raise NotImplementedError


class CommitRevealBlockhash(EntropySource):
    """Provably fair flip from a revealed secret and a future blockhash.

    Uses SHA-256 of (reveal + seed + blockhash). Even hash = HEADS, Odd hash = TAILS.
    """

    name = "commit-reveal-blockhash"

    def mix(self, reveal: bytes, seed: str, blockhash: str) -> bytes:
        return hashlib.sha256(reveal + bytes.fromhex(seed) + base58.b58decode(blockhash)).digest()

    def outcome(self, reveal: bytes, seed: str, external: str) -> CoinSide:
        digest = self.mix(reveal, seed, external)
        result = CoinSide.HEADS if int.from_bytes(digest, "big") % 2 == 0 else CoinSide.TAILS
        logger.info(f"[RNG] Coin flip result: {result.name} (blockhash: {external[:8]}..., hash: {digest.hex()[:16]}...)")
        return result


def verify_game_result(
    snapshot: RngSnapshot,
    reveal: bytes,
    blockhash: str,
    result: CoinSide,
    source: Optional[EntropySource] = None,
) -> bool:
    """Verify a resolved game's outcome from its public inputs.

    Allows anyone to verify the flip was fair.

    Args:
        snapshot: RNG snapshot taken at join
        reveal: Revealed secret for the snapshot epoch
        blockhash: External entropy used at resolution
        result: Recorded winning side
        source: Entropy source (defaults to CommitRevealBlockhash)

    Returns:
        True if the recorded result matches
    """
    source = source or CommitRevealBlockhash()
    return source.outcome(reveal, snapshot.seed, blockhash) == result


class EpochStore(Revertible):
    """Epoch commitments and the trusted signer allowed to reveal them."""

    _revertible = ("current_epoch", "trusted_signer")

    def __init__(self, events):
        self.events = events
        self.current_epoch = 1
        self.commitments: Dict[int, str] = {}
        self.trusted_signer: Optional[str] = None

    def commitment_of(self, epoch: int) -> Optional[str]:
        return self.commitments.get(epoch)

    def commit_seed(self, commitment: str, target_epoch: int):
        """Store a commitment for an epoch that has none yet.

        Raises:
            ValidationError: If the commitment is not a sha256 hex digest
            StateError: If the epoch is in the past or already committed
        """
        ok, _ = is_valid_commitment(commitment)
        if not ok:
            raise ValidationError("bad commitment")
        commitment = commitment.lower()
        if target_epoch < self.current_epoch:
            raise StateError("epoch<current")
        if target_epoch in self.commitments:
            raise StateError("epoch set")

        self._put(self.commitments, target_epoch, commitment)
        if target_epoch > self.current_epoch:
            self.current_epoch = target_epoch

        self.events.emit(EventType.SEED_COMMITTED, epoch=target_epoch, commitment=commitment)
        logger.info(f"[RNG] Committed epoch {target_epoch} (current epoch {self.current_epoch})")

    def set_signer(self, signer: str):
        previous = self.trusted_signer
        self.trusted_signer = signer
        self.events.emit(EventType.TRUSTED_SIGNER_UPDATED, previous=previous, signer=signer)

    def verify_reveal(self, epoch: int, reveal: bytes):
        """Check a reveal against the epoch commitment.

        Raises:
            EntropyError: If the epoch has no commitment or the reveal does not match
        """
        commitment = self.commitments.get(epoch)
        if commitment is None:
            raise EntropyError("no epoch commit")
        if commitment_for(reveal) != commitment:
            raise EntropyError("seed !commit")
