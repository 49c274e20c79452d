import pytest

from coinflip_escrow import CoinSide, EntropyError, GameState, NATIVE_ASSET, StateError
from coinflip_escrow.game import (
    SeedVault,
    commit_epoch,
    commitment_for,
    generate_encryption_key,
    resolve_from_vault,
    verify_game_result,
)

from conftest import STAKE, execute_timelocked, open_game


def test_new_epoch_secret_commitment_matches_reveal() -> None:
    vault = SeedVault()

    commitment = vault.new_epoch_secret(1)
    secret = vault.reveal(1)

    assert len(secret) == 32
    assert commitment_for(secret) == commitment
    assert vault.epochs() == [1]


def test_secrets_are_stored_encrypted() -> None:
    vault = SeedVault(generate_encryption_key())
    secret = b"\x11" * 32

    vault.store(2, secret)

    assert secret not in vault._sealed[2]
    assert vault.reveal(2) == secret


def test_epoch_secret_cannot_be_regenerated() -> None:
    vault = SeedVault()
    vault.new_epoch_secret(1)

    with pytest.raises(ValueError):
        vault.new_epoch_secret(1)


def test_unknown_epoch_raises_key_error() -> None:
    with pytest.raises(KeyError):
        SeedVault().reveal(9)


def test_sealed_secrets_reload_under_the_same_key() -> None:
    key = generate_encryption_key()
    vault = SeedVault(key)
    commitment = vault.new_epoch_secret(3)

    reloaded = SeedVault(key)
    reloaded.load(vault.sealed())

    assert reloaded.has_secret(3)
    assert reloaded.commitment_of(3) == commitment
    assert not reloaded.has_secret(4)


def test_commit_epoch_reuses_the_secret_across_queue_and_execute(engine) -> None:
    vault = SeedVault()

    commitment, executed = commit_epoch(engine, vault, engine.owner, 1)
    assert executed is False
    assert vault.epochs() == [1]

    engine.chain.advance_time(engine.settings.timelock_delay)
    again, executed = commit_epoch(engine, vault, engine.owner, 1)

    assert executed is True
    assert again == commitment
    assert engine.epoch_commitment(1) == commitment


def test_resolve_from_vault_reveals_the_epoch_secret(signed_engine, signer, alice, bob) -> None:
    vault = SeedVault()
    game_id = open_game(signed_engine, alice, bob)
    signed_engine.chain.mine(2)
    execute_timelocked(signed_engine, lambda: commit_epoch(signed_engine, vault, signed_engine.owner, 1)[1])

    settlement = resolve_from_vault(signed_engine, vault, signer, game_id)

    assert signed_engine.get_game(game_id).state is GameState.RESOLVED
    assert settlement.winner in (alice, bob)
    rng = signed_engine.get_rng_snapshot(game_id)
    assert verify_game_result(rng, vault.reveal(1), settlement.entropy, settlement.winning_side)


def test_resolve_from_vault_without_epoch_secret(signed_engine, signer, alice, bob) -> None:
    game_id = open_game(signed_engine, alice, bob)

    with pytest.raises(EntropyError, match="no epoch secret"):
        resolve_from_vault(signed_engine, SeedVault(), signer, game_id)
    assert signed_engine.get_game(game_id).state is GameState.RESOLVING


def test_resolve_from_vault_rejects_unjoined_and_unknown_games(signed_engine, signer, alice) -> None:
    game_id = signed_engine.create_game(alice, NATIVE_ASSET, STAKE, CoinSide.HEADS, value=STAKE)

    with pytest.raises(StateError, match="bad state"):
        resolve_from_vault(signed_engine, SeedVault(), signer, game_id)
    with pytest.raises(StateError, match="unknown game"):
        resolve_from_vault(signed_engine, SeedVault(), signer, 99)
