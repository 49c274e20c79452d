import pytest

from coinflip_escrow import CoinSide, GameState, NATIVE_ASSET, PaymentError, StateError, ValidationError
from coinflip_escrow.security import Revertible

from conftest import STAKE, funded_identity


class Store(Revertible):
    _revertible = ("count",)

    def __init__(self):
        self.count = 0
        self.data = {"a": 1}


def test_restore_undoes_writes_and_new_keys() -> None:
    store = Store()
    checkpoint = store.snapshot()

    store._put(store.data, "a", 2)
    store._put(store.data, "b", 3)
    store._drop(store.data, "a")
    store.count = 5
    store.restore(checkpoint)

    assert store.data == {"a": 1}
    assert store.count == 0
    assert store._journal is None


def test_outer_restore_undoes_a_committed_inner_checkpoint() -> None:
    store = Store()
    outer = store.snapshot()
    store._put(store.data, "a", 2)

    inner = store.snapshot()
    store._put(store.data, "b", 3)
    store.commit(inner)
    assert store._journal is not None

    store.restore(outer)

    assert store.data == {"a": 1}
    assert store._journal is None


def test_inner_restore_keeps_outer_writes() -> None:
    store = Store()
    outer = store.snapshot()
    store._put(store.data, "a", 2)

    inner = store.snapshot()
    store._put(store.data, "a", 3)
    store.restore(inner)
    assert store.data == {"a": 2}

    store.commit(outer)

    assert store.data == {"a": 2}
    assert store._journal is None


def test_writes_outside_a_checkpoint_are_not_journaled() -> None:
    store = Store()

    store._put(store.data, "a", 2)

    assert store._journal is None
    assert store.data == {"a": 2}


def test_calls_leave_no_journal_behind(engine, alice, bob) -> None:
    game_id = engine.create_game(alice, NATIVE_ASSET, STAKE, CoinSide.HEADS, value=STAKE)
    engine.join_game(bob, game_id, value=STAKE)

    with pytest.raises(StateError, match="bad state"):
        engine.join_game(bob, game_id, value=STAKE)

    for store in engine.revertibles():
        assert store._journal is None


def test_reverted_call_restores_the_touched_game(engine, chain) -> None:
    creator = funded_identity(chain)
    game_id = engine.create_game(creator, NATIVE_ASSET, STAKE, CoinSide.TAILS, value=STAKE)
    before = engine.get_game(game_id)
    events_before = len(engine.events)
    balance_before = chain.balance_of(NATIVE_ASSET, creator)

    def reject(sender, amount):
        raise RuntimeError("no thanks")

    chain.register_receiver(creator, reject)
    with pytest.raises(PaymentError, match="eth send failed"):
        engine.cancel_game(creator, game_id)

    assert engine.get_game(game_id) == before
    assert engine.get_game(game_id).state is GameState.CREATED
    assert engine.stats()["games_cancelled"] == 0
    assert len(engine.events) == events_before
    assert chain.balance_of(NATIVE_ASSET, creator) == balance_before
    assert engine.held_balance() == engine.liabilities(NATIVE_ASSET)


def test_reverted_create_leaves_no_new_keys(engine, chain, alice) -> None:
    balance_before = chain.balance_of(NATIVE_ASSET, alice)

    with pytest.raises(ValidationError, match="bad msg.value"):
        engine.create_game(alice, NATIVE_ASSET, STAKE, CoinSide.HEADS, value=STAKE + 1)

    assert engine.registry.games == {}
    assert engine.registry.daily_plays == {}
    assert engine.next_id == 0
    assert engine.daily_stats(alice)[0] == 0
    assert chain.balance_of(NATIVE_ASSET, alice) == balance_before
