import hashlib

import pytest
from solders.keypair import Keypair

from coinflip_escrow import Chain, CoinFlipGame, CoinSide, EngineSettings, LAMPORTS_PER_SOL, NATIVE_ASSET
from coinflip_escrow.game import CommitRevealBlockhash, commitment_for

# Midnight UTC, so daily allowance tests start at a day boundary
GENESIS = 1_699_920_000

STAKE = LAMPORTS_PER_SOL


def new_identity() -> str:
    return str(Keypair().pubkey())


def funded_identity(chain: Chain, amount: int = 100 * LAMPORTS_PER_SOL) -> str:
    identity = new_identity()
    chain.mint(NATIVE_ASSET, identity, amount)
    return identity


def execute_timelocked(engine: CoinFlipGame, action, *args):
    """Queue an admin action, wait out the delay and execute it."""
    assert action(*args) is False
    engine.chain.advance_time(engine.settings.timelock_delay)
    assert action(*args) is True


def reveal_for(side: CoinSide, seed: str, blockhash: str) -> bytes:
    """Find a 32-byte secret whose flip lands on the requested side."""
    source = CommitRevealBlockhash()
    for i in range(1000):
        reveal = hashlib.sha256(f"reveal-{i}".encode()).digest()
        if source.outcome(reveal, seed, blockhash) is side:
            return reveal
    raise AssertionError("no reveal found")


def open_game(engine: CoinFlipGame, creator: str, joiner: str, stake: int = STAKE, side=CoinSide.HEADS) -> int:
    """Create and join a native game, leaving it in RESOLVING."""
    game_id = engine.create_game(creator, NATIVE_ASSET, stake, side, value=stake)
    engine.join_game(joiner, game_id, value=stake)
    return game_id


def commit_reveal_for(engine: CoinFlipGame, game_id: int, side: CoinSide) -> bytes:
    """Mine past the target block, then commit a secret that makes `side` win."""
    rng = engine.get_rng_snapshot(game_id)
    engine.chain.mine(2)
    reveal = reveal_for(side, rng.seed, engine.chain.blockhash(rng.target_block))
    execute_timelocked(engine, engine.commit_server_seed, engine.owner, commitment_for(reveal), rng.epoch)
    return reveal


@pytest.fixture
def chain() -> Chain:
    return Chain(genesis_time=GENESIS)


@pytest.fixture
def owner_key() -> Keypair:
    return Keypair()


@pytest.fixture
def signer_key() -> Keypair:
    return Keypair()


@pytest.fixture
def owner(owner_key) -> str:
    return str(owner_key.pubkey())


@pytest.fixture
def signer(signer_key) -> str:
    return str(signer_key.pubkey())


@pytest.fixture
def alice(chain) -> str:
    return funded_identity(chain)


@pytest.fixture
def bob(chain) -> str:
    return funded_identity(chain)


@pytest.fixture
def carol(chain) -> str:
    return funded_identity(chain)


@pytest.fixture
def engine(chain, owner) -> CoinFlipGame:
    return CoinFlipGame(chain, owner, EngineSettings())


@pytest.fixture
def signed_engine(engine, signer) -> CoinFlipGame:
    """Engine with a trusted signer installed."""
    execute_timelocked(engine, engine.set_trusted_signer, engine.owner, signer)
    return engine
