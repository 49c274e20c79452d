"""
Signer-side secret storage for commit-reveal epochs.

The trusted signer generates one secret per epoch, publishes only its
commitment, and keeps the secret encrypted at rest until it reveals it to
resolve games.
"""
import logging
import secrets
from typing import Dict, Optional, Tuple

from cryptography.fernet import Fernet

from ..errors import EntropyError, StateError
from .randomness import REVEAL_BYTES, commitment_for

logger = logging.getLogger(__name__)


def generate_encryption_key() -> str:
    """Generate a new vault encryption key."""
    return Fernet.generate_key().decode("utf-8")


class SeedVault:
    """Per-epoch secrets, encrypted with Fernet."""

    def __init__(self, encryption_key: Optional[str] = None):
        self.encryption_key = encryption_key or generate_encryption_key()
        self._fernet = Fernet(self.encryption_key.encode())
        self._sealed: Dict[int, bytes] = {}  # epoch -> ciphertext

    def new_epoch_secret(self, epoch: int) -> str:
        """Generate and store a secret for an epoch.

        Args:
            epoch: Epoch the secret will be committed for

        Returns:
            Commitment (sha256 hex) to publish

        Raises:
            ValueError: If a secret already exists for the epoch
        """
        if epoch in self._sealed:
            raise ValueError(f"Secret for epoch {epoch} already exists")

        secret = secrets.token_bytes(REVEAL_BYTES)
        self._sealed[epoch] = self._fernet.encrypt(secret)
        commitment = commitment_for(secret)
        logger.info(f"[SIGNER] Generated secret for epoch {epoch} (commitment {commitment[:16]}...)")
        return commitment

    def store(self, epoch: int, secret: bytes) -> str:
        """Store an externally generated secret. Returns its commitment."""
        self._sealed[epoch] = self._fernet.encrypt(secret)
        return commitment_for(secret)

    def has_secret(self, epoch: int) -> bool:
        return epoch in self._sealed

    def commitment_of(self, epoch: int) -> str:
        """Commitment for an existing epoch secret."""
        return commitment_for(self.reveal(epoch))

    def reveal(self, epoch: int) -> bytes:
        """Decrypt the secret for an epoch.

        Raises:
            KeyError: If no secret was generated for the epoch
        """
        return self._fernet.decrypt(self._sealed[epoch])

    def epochs(self):
        return sorted(self._sealed)

    def sealed(self) -> Dict[int, bytes]:
        """Ciphertexts by epoch. Safe to persist; useless without the key."""
        return dict(self._sealed)

    def load(self, sealed: Dict[int, bytes]):
        """Replace the stored ciphertexts (used when restoring from the database)."""
        self._sealed = dict(sealed)


def commit_epoch(engine, vault: SeedVault, sender: str, epoch: int) -> Tuple[str, bool]:
    """Commit the vault's secret for an epoch through the engine timelock.

    The secret is generated on first use and reused afterwards, so the queue
    call and the execute call carry the same commitment.

    Args:
        engine: CoinFlipGame instance
        vault: Signer vault holding the epoch secrets
        sender: Engine owner
        epoch: Epoch to commit

    Returns:
        Tuple of (commitment, executed)
    """
    if vault.has_secret(epoch):
        commitment = vault.commitment_of(epoch)
    else:
        commitment = vault.new_epoch_secret(epoch)
    executed = engine.commit_server_seed(sender, commitment, epoch)
    return commitment, executed


def resolve_from_vault(engine, vault: SeedVault, sender: str, game_id: int):
    """Resolve a joined game by revealing the vault's secret for its epoch.

    Raises:
        StateError: If the game does not exist or was never joined
        EntropyError: If the vault holds no secret for the game's epoch
    """
    snapshot = engine.get_rng_snapshot(game_id)
    if snapshot is None:
        engine.get_game(game_id)
        raise StateError("bad state")
    if not vault.has_secret(snapshot.epoch):
        raise EntropyError("no epoch secret")

    logger.info(f"[SIGNER] Revealing epoch {snapshot.epoch} secret for game {game_id}")
    return engine.resolve_by_signer(sender, game_id, vault.reveal(snapshot.epoch))
