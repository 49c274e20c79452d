"""Game logic module for the settlement engine."""
from .coinflip import CoinFlipGame
from .chain import Chain, generate_address
from .randomness import (
    CommitRevealBlockhash,
    EntropySource,
    commitment_for,
    derive_seed,
    verify_game_result,
)
from .resolution import Settlement, SignerResolution, EmergencyResolution
from .fees import split_pool
from .signer import SeedVault, commit_epoch, generate_encryption_key, resolve_from_vault

__all__ = [
    "CoinFlipGame",
    "Chain",
    "generate_address",
    "CommitRevealBlockhash",
    "EntropySource",
    "commitment_for",
    "derive_seed",
    "verify_game_result",
    "Settlement",
    "SignerResolution",
    "EmergencyResolution",
    "split_pool",
    "SeedVault",
    "commit_epoch",
    "resolve_from_vault",
    "generate_encryption_key",
]
