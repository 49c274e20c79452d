import hashlib

import base58
import pytest

from coinflip_escrow import CoinSide, StateError, ValidationError
from coinflip_escrow.database import RngSnapshot
from coinflip_escrow.game import CommitRevealBlockhash, EntropySource, commitment_for, derive_seed, verify_game_result
from coinflip_escrow.security import EventType, fingerprint

from conftest import execute_timelocked, new_identity


BLOCKHASH = base58.b58encode(hashlib.sha256(b"block").digest()).decode()


def test_commitment_is_sha256_hex_of_reveal() -> None:
    reveal = b"\x07" * 32

    assert commitment_for(reveal) == hashlib.sha256(reveal).hexdigest()


def test_derive_seed_is_deterministic_and_binds_participants() -> None:
    creator, joiner, asset = new_identity(), new_identity(), new_identity()

    seed = derive_seed(0, creator, joiner, asset, 10)

    assert seed == derive_seed(0, creator, joiner, asset, 10)
    assert seed != derive_seed(1, creator, joiner, asset, 10)
    assert seed != derive_seed(0, joiner, creator, asset, 10)
    assert seed != derive_seed(0, creator, joiner, asset, 11)


def test_outcome_follows_parity_of_mixed_hash() -> None:
    source = CommitRevealBlockhash()
    seed = derive_seed(0, "a", "b", "c", 1)

    for i in range(20):
        reveal = hashlib.sha256(bytes([i])).digest()
        digest = hashlib.sha256(reveal + bytes.fromhex(seed) + base58.b58decode(BLOCKHASH)).digest()
        expected = CoinSide.HEADS if digest[-1] % 2 == 0 else CoinSide.TAILS

        assert source.outcome(reveal, seed, BLOCKHASH) is expected


def test_verify_game_result_accepts_a_custom_source() -> None:
    class AlwaysTails(EntropySource):
        name = "always-tails"

        def outcome(self, reveal, seed, external):
            return CoinSide.TAILS

    snapshot = RngSnapshot(seed=derive_seed(0, "a", "b", "c", 1), target_block=1, epoch=1)

    assert verify_game_result(snapshot, b"\x00" * 32, BLOCKHASH, CoinSide.TAILS, AlwaysTails()) is True
    assert verify_game_result(snapshot, b"\x00" * 32, BLOCKHASH, CoinSide.HEADS, AlwaysTails()) is False


def test_epochs_only_move_forward(engine) -> None:
    assert engine.current_epoch == 1

    execute_timelocked(engine, engine.commit_server_seed, engine.owner, "01" * 32, 5)
    assert engine.current_epoch == 5
    assert engine.epoch_commitment(5) == "01" * 32

    engine.commit_server_seed(engine.owner, "02" * 32, 3)
    engine.chain.advance_time(engine.settings.timelock_delay)
    with pytest.raises(StateError, match="epoch<current"):
        engine.commit_server_seed(engine.owner, "02" * 32, 3)

    engine.commit_server_seed(engine.owner, "03" * 32, 5)
    engine.chain.advance_time(engine.settings.timelock_delay)
    with pytest.raises(StateError, match="epoch set"):
        engine.commit_server_seed(engine.owner, "03" * 32, 5)

    assert engine.current_epoch == 5
    assert engine.epoch_commitment(5) == "01" * 32


def test_committing_current_epoch_keeps_it(engine) -> None:
    execute_timelocked(engine, engine.commit_server_seed, engine.owner, "0a" * 32, 1)

    assert engine.current_epoch == 1
    assert engine.events.last(EventType.SEED_COMMITTED).args == {"epoch": 1, "commitment": "0a" * 32}


def test_signer_rotation_reports_previous(engine) -> None:
    first, second = new_identity(), new_identity()

    execute_timelocked(engine, engine.set_trusted_signer, engine.owner, first)
    execute_timelocked(engine, engine.set_trusted_signer, engine.owner, second)

    assert engine.trusted_signer == second
    updated = engine.events.last(EventType.TRUSTED_SIGNER_UPDATED)
    assert updated.args == {"previous": first, "signer": second}


@pytest.mark.parametrize("commitment", ["", "not-hex", "ab" * 31, "ab" * 33, "zz" * 32, "0x" + "ab" * 31])
def test_malformed_commitment_is_rejected_before_queueing(engine, commitment) -> None:
    with pytest.raises(ValidationError, match="bad commitment"):
        engine.commit_server_seed(engine.owner, commitment, 1)

    assert engine.timelock.queue == {}
    assert engine.events.last(EventType.ACTION_QUEUED) is None


def test_uppercase_commitment_queues_the_same_action(engine) -> None:
    reveal = b"\x07" * 32
    commitment = commitment_for(reveal)

    assert engine.commit_server_seed(engine.owner, commitment.upper(), 1) is False
    assert engine.queued_at(fingerprint("commitServerSeed", commitment, 1)) is not None

    engine.chain.advance_time(engine.settings.timelock_delay)
    assert engine.commit_server_seed(engine.owner, commitment, 1) is True
    assert engine.epoch_commitment(1) == commitment
