import pytest
from hypothesis import given, settings, strategies as st

from coinflip_escrow import (
    Chain,
    CoinFlipGame,
    CoinflipError,
    CoinSide,
    GameState,
    LAMPORTS_PER_SOL,
    NATIVE_ASSET,
    PaymentError,
    ValidationError,
)
from coinflip_escrow.security import EventType

from conftest import GENESIS, STAKE, execute_timelocked, funded_identity, new_identity, open_game


@pytest.fixture
def token(engine, chain):
    token = chain.create_token("USDC")
    execute_timelocked(engine, engine.set_whitelist, engine.owner, token, True)
    return token


def fund_token(chain, engine, token, holder, amount=10 * STAKE):
    chain.mint(token, holder, amount)
    chain.approve(token, holder, engine.address, amount)


def test_claim_pays_out_once(signed_engine, signer, alice, bob, chain) -> None:
    engine = signed_engine
    game_id = open_game(engine, alice, bob)
    engine.emergency_resolve(signer, game_id, CoinSide.HEADS)
    owed = engine.claimable(alice, NATIVE_ASSET)
    before = chain.balance_of(NATIVE_ASSET, alice)

    assert engine.claim_funds(alice, NATIVE_ASSET) == owed

    assert chain.balance_of(NATIVE_ASSET, alice) == before + owed
    assert engine.claimable(alice, NATIVE_ASSET) == 0
    assert engine.events.last(EventType.FUNDS_CLAIMED).args["amount"] == owed
    with pytest.raises(ValidationError, match="no funds"):
        engine.claim_funds(alice, NATIVE_ASSET)


def test_winnings_are_never_pushed(signed_engine, signer, alice, bob, chain) -> None:
    engine = signed_engine
    game_id = open_game(engine, alice, bob)
    before = chain.balance_of(NATIVE_ASSET, alice)

    engine.emergency_resolve(signer, game_id, CoinSide.HEADS)

    assert chain.balance_of(NATIVE_ASSET, alice) == before
    assert engine.held_balance() == 2 * STAKE


def test_reentrant_claim_from_receiver_reverts_whole_claim(signed_engine, signer, chain, bob) -> None:
    engine = signed_engine
    attacker = funded_identity(chain)
    game_id = open_game(engine, attacker, bob)
    engine.emergency_resolve(signer, game_id, CoinSide.HEADS)
    owed = engine.claimable(attacker, NATIVE_ASSET)
    seen = []

    def reenter(sender, amount):
        seen.append(engine.claimable(attacker, NATIVE_ASSET))
        engine.claim_funds(attacker, NATIVE_ASSET)

    chain.register_receiver(attacker, reenter)
    before = chain.balance_of(NATIVE_ASSET, attacker)

    with pytest.raises(PaymentError, match="eth send failed"):
        engine.claim_funds(attacker, NATIVE_ASSET)

    # Balance was already zeroed when the receiver ran
    assert seen == [0]
    assert engine.claimable(attacker, NATIVE_ASSET) == owed
    assert chain.balance_of(NATIVE_ASSET, attacker) == before
    assert engine.held_balance() == engine.liabilities(NATIVE_ASSET)


def test_receiver_can_observe_but_not_reenter(signed_engine, signer, chain, bob) -> None:
    engine = signed_engine
    receiver = funded_identity(chain)
    game_id = open_game(engine, receiver, bob)
    engine.emergency_resolve(signer, game_id, CoinSide.HEADS)
    owed = engine.claimable(receiver, NATIVE_ASSET)
    attempts = []

    def reenter_create(sender, amount):
        try:
            engine.create_game(receiver, NATIVE_ASSET, STAKE, CoinSide.HEADS)
        except CoinflipError as e:
            attempts.append(e.reason)

    chain.register_receiver(receiver, reenter_create)

    assert engine.claim_funds(receiver, NATIVE_ASSET) == owed
    assert attempts == ["reentrant call"]
    assert engine.next_id == 1


def test_token_game_round_trip(signed_engine, signer, chain, alice, bob, token) -> None:
    engine = signed_engine
    fund_token(chain, engine, token, alice)
    fund_token(chain, engine, token, bob)

    game_id = engine.create_game(alice, token, STAKE, CoinSide.HEADS)
    engine.join_game(bob, game_id)
    assert chain.balance_of(token, engine.address) == 2 * STAKE

    engine.emergency_resolve(signer, game_id, CoinSide.TAILS)
    payout = engine.claimable(bob, token)
    engine.claim_funds(bob, token)

    assert chain.balance_of(token, bob) == 10 * STAKE - STAKE + payout
    assert chain.balance_of(token, engine.address) == engine.accrued_fee(token)
    assert engine.held_balance(token) == engine.liabilities(token)


def test_token_stake_rejects_native_value(engine, chain, alice, token) -> None:
    fund_token(chain, engine, token, alice)

    with pytest.raises(ValidationError, match="eth sent"):
        engine.create_game(alice, token, STAKE, CoinSide.HEADS, value=1)


def test_token_stake_requires_allowance(engine, chain, alice, token) -> None:
    chain.mint(token, alice, STAKE)

    with pytest.raises(PaymentError, match="transferFrom failed"):
        engine.create_game(alice, token, STAKE, CoinSide.HEADS)


def test_fee_on_transfer_token_is_rejected(engine, chain, alice) -> None:
    deflationary = chain.create_token("BURN", transfer_fee_bps=100)
    execute_timelocked(engine, engine.set_whitelist, engine.owner, deflationary, True)
    fund_token(chain, engine, deflationary, alice)

    with pytest.raises(ValidationError, match="fee-on-transfer"):
        engine.create_game(alice, deflationary, STAKE, CoinSide.HEADS)

    assert chain.balance_of(deflationary, alice) == 10 * STAKE
    assert chain.allowance(deflationary, alice, engine.address) == 10 * STAKE
    assert engine.next_id == 0


def test_delisted_token_cannot_be_joined(engine, chain, alice, bob, token) -> None:
    fund_token(chain, engine, token, alice)
    fund_token(chain, engine, token, bob)
    game_id = engine.create_game(alice, token, STAKE, CoinSide.HEADS)

    execute_timelocked(engine, engine.set_whitelist, engine.owner, token, False)

    with pytest.raises(ValidationError, match="token !whitelisted"):
        engine.join_game(bob, game_id)
    # The creator can still get out
    engine.cancel_game(alice, game_id)
    assert chain.balance_of(token, alice) == 10 * STAKE


ACTIONS = st.lists(
    st.tuples(
        st.sampled_from(["create", "join", "cancel", "resolve", "refund", "claim", "wait"]),
        st.integers(min_value=0, max_value=5),
        st.integers(min_value=1, max_value=3 * LAMPORTS_PER_SOL),
    ),
    max_size=40,
)


@settings(max_examples=40, deadline=None)
@given(actions=ACTIONS)
def test_held_balance_always_matches_liabilities(actions) -> None:
    chain = Chain(genesis_time=GENESIS)
    owner = new_identity()
    signer = new_identity()
    engine = CoinFlipGame(chain, owner)
    execute_timelocked(engine, engine.set_trusted_signer, owner, signer)
    players = [funded_identity(chain) for _ in range(3)]

    for action, pick, amount in actions:
        player = players[pick % len(players)]
        game_id = pick % (engine.next_id or 1)
        try:
            if action == "create":
                engine.create_game(player, NATIVE_ASSET, amount, CoinSide(pick % 2), value=amount)
            elif action == "join":
                stake = engine.get_game(game_id).stake
                engine.join_game(player, game_id, value=stake)
            elif action == "cancel":
                engine.cancel_game(player, game_id)
            elif action == "resolve":
                engine.emergency_resolve(signer, game_id, CoinSide(pick % 2))
            elif action == "refund":
                engine.claim_refund(player, game_id)
            elif action == "claim":
                engine.claim_funds(player, NATIVE_ASSET)
            else:
                chain.advance_time(amount // 1000)
        except CoinflipError:
            pass

        assert engine.held_balance() == engine.liabilities(NATIVE_ASSET)

    for game in engine.list_games(0, engine.next_id):
        if game.state in (GameState.RESOLVED, GameState.CANCELLED):
            assert game.pool == 0
