"""
FastAPI surface for the coinflip settlement engine.

Every engine entry point and query is exposed as a JSON endpoint. Callers
sign in by signing a challenge with their wallet key and then send the
session as `Authorization: Bearer <token>`; the engine call's sender is
always the session's wallet. The engine enforces who may do what.
"""
import os
import logging
from typing import List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import load_settings
from .constants import NATIVE_ASSET
from .database import Database, Game, CoinSide
from .errors import (
    AuthorizationError,
    CoinflipError,
    EntropyError,
    PaymentError,
    StateError,
    TimingError,
    ValidationError,
)
from .game import (
    Chain,
    CoinFlipGame,
    SeedVault,
    commit_epoch,
    generate_address,
    resolve_from_vault,
    verify_game_result,
)
from .security import EventType, SessionStore
from .utils import format_amount, is_valid_address, is_valid_amount

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# First match wins, so subclasses come before StateError
ERROR_STATUS = [
    (ValidationError, 400),
    (AuthorizationError, 403),
    (TimingError, 425),
    (EntropyError, 422),
    (PaymentError, 502),
    (StateError, 409),
]

# Login failures are 401, not 403
LOGIN_FAILURES = {"no challenge", "challenge expired", "bad signature"}


def status_for(error: CoinflipError) -> int:
    """HTTP status code for an engine error."""
    if error.reason == "unknown game":
        return 404
    if error.reason in LOGIN_FAILURES:
        return 401
    for error_class, status in ERROR_STATUS:
        if isinstance(error, error_class):
            return status
    return 400


# === REQUEST MODELS ===

class ChallengeRequest(BaseModel):
    wallet: str


class LoginRequest(BaseModel):
    wallet: str
    signature: str  # base58 ed25519 signature of the challenge message


class CreateGameRequest(BaseModel):
    stake: int
    side: str  # "heads" or "tails"
    asset: str = NATIVE_ASSET
    value: int = 0  # Attached native value; must equal stake for native games


class JoinGameRequest(BaseModel):
    value: int = 0


class ResolveRequest(BaseModel):
    reveal: Optional[str] = None  # 32-byte secret as hex; omitted = reveal from the signer vault


class EmergencyResolveRequest(BaseModel):
    side: str


class ClaimRequest(BaseModel):
    asset: str = NATIVE_ASSET


class WhitelistRequest(BaseModel):
    asset: str
    allowed: bool


class TrustedSignerRequest(BaseModel):
    signer: str


class CommitSeedRequest(BaseModel):
    epoch: int
    commitment: Optional[str] = None  # omitted = commit the signer vault's secret


class WithdrawFeesRequest(BaseModel):
    asset: str = NATIVE_ASSET
    amount: int


class UpgradeRequest(BaseModel):
    implementation: str


class DailyLimitRequest(BaseModel):
    limit: int


class MineRequest(BaseModel):
    blocks: int = 1


class AdvanceTimeRequest(BaseModel):
    seconds: int


class FaucetRequest(BaseModel):
    owner: str
    amount: int
    asset: str = NATIVE_ASSET


# === RESPONSE MODELS ===

class GameResponse(BaseModel):
    game_id: int
    creator: str
    joiner: Optional[str]
    asset: str
    stake: int
    stake_display: str
    creator_side: str
    state: str
    winner: Optional[str]
    pool: int
    created_at: int
    resolve_deadline: int


class AdminActionResponse(BaseModel):
    """Outcome of a timelocked admin call."""
    action: str
    executed: bool  # False means the call was queued


class CommitSeedResponse(AdminActionResponse):
    commitment: str


def game_to_response(game: Game) -> GameResponse:
    return GameResponse(
        game_id=game.game_id,
        creator=game.creator,
        joiner=game.joiner,
        asset=game.asset,
        stake=game.stake,
        stake_display=format_amount(game.stake),
        creator_side=game.creator_side.name.lower(),
        state=game.state.name,
        winner=game.winner,
        pool=game.pool,
        created_at=game.created_at,
        resolve_deadline=game.resolve_deadline,
    )


def parse_side(side: str) -> CoinSide:
    try:
        return CoinSide[side.upper()]
    except KeyError:
        raise HTTPException(status_code=400, detail="Invalid side. Must be 'heads' or 'tails'")


def parse_reveal(reveal: str) -> bytes:
    try:
        return bytes.fromhex(reveal)
    except ValueError:
        raise HTTPException(status_code=400, detail="Reveal must be hex encoded")


def require_address(address: str, field: str = "address"):
    ok, error = is_valid_address(address)
    if not ok:
        raise HTTPException(status_code=400, detail=f"Invalid {field}: {error}")


# ===== HELPER: Get caller from session =====

def get_session_token(request: Request) -> Optional[str]:
    """Extract session token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def build_engine() -> Tuple[CoinFlipGame, Database, SeedVault]:
    """Engine, database and signer vault from COINFLIP_* settings, restored from disk if saved.

    The chain is rebuilt from the saved snapshot together with the engine, so
    escrowed and claimable balances survive a restart.
    """
    settings = load_settings()
    owner = settings.owner
    if not owner:
        owner = generate_address()
        logger.warning(f"COINFLIP_OWNER not set - generated ephemeral owner {owner}")

    chain = Chain(blockhash_window=settings.blockhash_window)
    engine = CoinFlipGame(chain, owner, settings)
    db = Database(settings.db_path)
    if db.load_engine(engine):
        logger.info(f"Restored engine state from {settings.db_path}")

    vault = SeedVault(settings.seed_key)
    if settings.seed_key:
        loaded = db.load_vault(vault)
        logger.info(f"Loaded {loaded} sealed epoch secrets")
    else:
        # Secrets sealed under an earlier key cannot be opened
        logger.warning("COINFLIP_SEED_KEY not set - signer vault uses an ephemeral key")

    return engine, db, vault


def create_app(
    engine: Optional[CoinFlipGame] = None,
    db: Optional[Database] = None,
    vault: Optional[SeedVault] = None,
    sessions: Optional[SessionStore] = None,
) -> FastAPI:
    """Build the HTTP app around an engine.

    Args:
        engine: Engine to serve (built from the environment if omitted)
        db: Database the engine is saved to after every successful mutation
        vault: Signer vault used when seeds are committed or revealed without explicit values
        sessions: Wallet session store

    Returns:
        FastAPI app
    """
    if engine is None:
        engine, db, vault = build_engine()
    if vault is None:
        vault = SeedVault(engine.settings.seed_key)
    if sessions is None:
        sessions = SessionStore(session_ttl=engine.settings.session_ttl)

    app = FastAPI(title="Coinflip Escrow API", version=engine.version)
    app.state.engine = engine
    app.state.db = db
    app.state.vault = vault
    app.state.sessions = sessions

    # CORS - SECURITY: Restrict to your domain in production
    cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if cors_origins != ["*"] else ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(CoinflipError)
    async def engine_error_handler(request: Request, exc: CoinflipError):
        status = status_for(exc)
        logger.info(f"[API] {request.url.path} rejected ({status}): {exc.reason}")
        return JSONResponse(
            status_code=status,
            content={"detail": exc.reason, "error": type(exc).__name__},
        )

    def require_auth(request: Request) -> str:
        """Require a live session, raise 401 if not. Returns the caller's wallet."""
        wallet = sessions.identity(get_session_token(request))
        if not wallet:
            raise HTTPException(status_code=401, detail="Not authenticated. Please login.")
        return wallet

    def require_owner(request: Request) -> str:
        """Require the engine owner's session, raise 401/403 if not."""
        wallet = require_auth(request)
        if wallet != engine.owner:
            logger.warning(f"[API] Non-owner {wallet} attempted ledger host control")
            raise HTTPException(status_code=403, detail="Owner access required.")
        return wallet

    def persist():
        if db is not None:
            db.save_engine(engine)
            db.save_vault(vault)

    def admin_result(action: str, executed: bool) -> AdminActionResponse:
        persist()
        return AdminActionResponse(action=action, executed=executed)

    # ===== INFO =====

    @app.get("/")
    async def root():
        return {
            "name": "Coinflip Escrow",
            "version": engine.version,
            "engine": engine.address,
            "owner": engine.owner,
        }

    @app.get("/health")
    async def health():
        return {"status": "ok", "block": engine.chain.block_number, "paused": engine.paused}

    @app.get("/api/stats")
    async def stats():
        return engine.stats()

    # ===== AUTH =====

    @app.post("/api/auth/challenge")
    async def auth_challenge(body: ChallengeRequest):
        """Get a one-time message to sign with the wallet key."""
        message, expires_at = sessions.challenge(body.wallet)
        return {"wallet": body.wallet, "message": message, "expires_at": expires_at}

    @app.post("/api/auth/login")
    async def auth_login(body: LoginRequest):
        """Exchange a signed challenge for a session token."""
        token, expires_at = sessions.login(body.wallet, body.signature)
        return {"wallet": body.wallet, "session_token": token, "expires_at": expires_at}

    @app.post("/api/auth/logout")
    async def auth_logout(request: Request):
        token = get_session_token(request)
        if token:
            sessions.logout(token)
        return {"success": True}

    @app.get("/api/auth/me")
    async def auth_me(request: Request):
        wallet = require_auth(request)
        return {
            "wallet": wallet,
            "is_owner": wallet == engine.owner,
            "is_signer": wallet == engine.trusted_signer,
        }

    # ===== GAMES =====

    @app.post("/api/games")
    async def create_game(body: CreateGameRequest, request: Request):
        """Open a new wager."""
        sender = require_auth(request)
        ok, error = is_valid_amount(body.stake)
        if not ok:
            raise HTTPException(status_code=400, detail=error)
        side = parse_side(body.side)

        game_id = engine.create_game(sender, body.asset, body.stake, side, value=body.value)
        persist()
        return game_to_response(engine.get_game(game_id))

    @app.get("/api/games")
    async def list_games(start: int = 0, count: int = 20) -> List[GameResponse]:
        return [game_to_response(game) for game in engine.list_games(start, count)]

    @app.get("/api/games/{game_id}")
    async def get_game(game_id: int) -> GameResponse:
        return game_to_response(engine.get_game(game_id))

    @app.get("/api/games/{game_id}/rng")
    async def get_rng(game_id: int):
        engine.get_game(game_id)
        snapshot = engine.get_rng_snapshot(game_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Game has not been joined")
        return {"seed": snapshot.seed, "target_block": snapshot.target_block, "epoch": snapshot.epoch}

    @app.post("/api/games/{game_id}/join")
    async def join_game(game_id: int, body: JoinGameRequest, request: Request):
        sender = require_auth(request)
        snapshot = engine.join_game(sender, game_id, value=body.value)
        persist()
        return {
            "game": game_to_response(engine.get_game(game_id)),
            "target_block": snapshot.target_block,
            "epoch": snapshot.epoch,
        }

    @app.post("/api/games/{game_id}/cancel")
    async def cancel_game(game_id: int, request: Request):
        refund = engine.cancel_game(require_auth(request), game_id)
        persist()
        return {"game_id": game_id, "refund": refund}

    @app.post("/api/games/{game_id}/refund")
    async def claim_refund(game_id: int, request: Request):
        creator_share, joiner_share = engine.claim_refund(require_auth(request), game_id)
        persist()
        return {"game_id": game_id, "creator_amount": creator_share, "joiner_amount": joiner_share}

    @app.post("/api/games/{game_id}/resolve")
    async def resolve_game(game_id: int, body: ResolveRequest, request: Request):
        """Resolve with the revealed epoch secret (trusted signer only)."""
        sender = require_auth(request)
        if body.reveal is None:
            settlement = resolve_from_vault(engine, vault, sender, game_id)
        else:
            settlement = engine.resolve_by_signer(sender, game_id, parse_reveal(body.reveal))
        persist()
        return {
            "game_id": game_id,
            "winning_side": settlement.winning_side.name.lower(),
            "winner": settlement.winner,
            "payout": settlement.payout,
            "fee": settlement.fee,
            "blockhash": settlement.entropy,
        }

    @app.post("/api/games/{game_id}/emergency-resolve")
    async def emergency_resolve(game_id: int, body: EmergencyResolveRequest, request: Request):
        sender = require_auth(request)
        settlement = engine.emergency_resolve(sender, game_id, parse_side(body.side))
        persist()
        return {
            "game_id": game_id,
            "winning_side": settlement.winning_side.name.lower(),
            "winner": settlement.winner,
            "payout": settlement.payout,
            "fee": settlement.fee,
        }

    @app.get("/api/games/{game_id}/verify")
    async def verify_game(game_id: int):
        """Verify game fairness from its public inputs."""
        game = engine.get_game(game_id)
        resolved = [
            e for e in engine.events.events(EventType.RESOLVED_WITH_SIGNER)
            if e.args.get("game_id") == game_id
        ]
        if not resolved:
            raise HTTPException(status_code=404, detail="Game was not resolved by reveal")

        event = resolved[-1]
        winning_side = game.creator_side if game.winner == game.creator else game.joiner_side
        is_fair = verify_game_result(
            engine.get_rng_snapshot(game_id),
            bytes.fromhex(event.args["reveal"]),
            event.args["entropy"],
            winning_side,
            engine.resolver.source,
        )

        return {
            "game_id": game_id,
            "reveal": event.args["reveal"],
            "blockhash": event.args["entropy"],
            "result": winning_side.name.lower(),
            "is_fair": is_fair,
            "message": "Game result is provably fair!" if is_fair else "Game result verification failed!",
        }

    # ===== BALANCES =====

    @app.post("/api/claim")
    async def claim_funds(body: ClaimRequest, request: Request):
        sender = require_auth(request)
        amount = engine.claim_funds(sender, body.asset)
        persist()
        return {"owner": sender, "asset": body.asset, "amount": amount}

    @app.get("/api/claimable/{owner}")
    async def claimable(owner: str, asset: str = NATIVE_ASSET):
        amount = engine.claimable(owner, asset)
        return {"owner": owner, "asset": asset, "amount": amount, "display": format_amount(amount)}

    @app.get("/api/fees")
    async def accrued_fees(asset: str = NATIVE_ASSET):
        return {"asset": asset, "accrued": engine.accrued_fee(asset)}

    @app.get("/api/daily/{identity}")
    async def daily_stats(identity: str):
        played, max_per_day, remaining, next_reset = engine.daily_stats(identity)
        return {
            "played": played,
            "max_per_day": max_per_day,
            "remaining": remaining,
            "next_reset": next_reset,
        }

    # ===== EPOCHS / WHITELIST / TIMELOCK =====

    @app.get("/api/epochs/current")
    async def current_epoch():
        return {"current_epoch": engine.current_epoch, "trusted_signer": engine.trusted_signer}

    @app.get("/api/epochs/{epoch}")
    async def epoch_commitment(epoch: int):
        return {"epoch": epoch, "commitment": engine.epoch_commitment(epoch)}

    @app.get("/api/whitelist/{asset}")
    async def is_whitelisted(asset: str):
        return {"asset": asset, "allowed": engine.is_whitelisted(asset)}

    @app.get("/api/timelock/{action_id}")
    async def queued_at(action_id: str):
        return {"fingerprint": action_id, "execute_after": engine.queued_at(action_id)}

    @app.get("/api/events")
    async def events(limit: int = 50):
        return [
            {
                "event_type": e.event_type,
                "args": e.args,
                "block": e.block,
                "timestamp": e.timestamp,
                "severity": e.severity,
            }
            for e in engine.events.events(limit=limit)
        ]

    # ===== ADMIN (TIMELOCKED) =====

    @app.post("/api/admin/whitelist")
    async def set_whitelist(body: WhitelistRequest, request: Request) -> AdminActionResponse:
        sender = require_auth(request)
        require_address(body.asset, "asset")
        return admin_result("setWhitelist", engine.set_whitelist(sender, body.asset, body.allowed))

    @app.post("/api/admin/trusted-signer")
    async def set_trusted_signer(body: TrustedSignerRequest, request: Request) -> AdminActionResponse:
        sender = require_auth(request)
        require_address(body.signer, "signer")
        return admin_result("setTrustedSigner", engine.set_trusted_signer(sender, body.signer))

    @app.post("/api/admin/commit-seed")
    async def commit_server_seed(body: CommitSeedRequest, request: Request) -> CommitSeedResponse:
        sender = require_auth(request)
        if body.commitment is None:
            commitment, executed = commit_epoch(engine, vault, sender, body.epoch)
        else:
            commitment = body.commitment
            executed = engine.commit_server_seed(sender, commitment, body.epoch)
        persist()
        return CommitSeedResponse(action="commitServerSeed", executed=executed, commitment=commitment)

    @app.post("/api/admin/withdraw-fees")
    async def withdraw_fees(body: WithdrawFeesRequest, request: Request) -> AdminActionResponse:
        sender = require_auth(request)
        return admin_result("withdrawFees", engine.withdraw_fees(sender, body.asset, body.amount))

    @app.post("/api/admin/pause")
    async def pause(request: Request) -> AdminActionResponse:
        return admin_result("pause", engine.pause(require_auth(request)))

    @app.post("/api/admin/unpause")
    async def unpause(request: Request) -> AdminActionResponse:
        return admin_result("unpause", engine.unpause(require_auth(request)))

    @app.post("/api/admin/upgrade")
    async def authorize_upgrade(body: UpgradeRequest, request: Request) -> AdminActionResponse:
        sender = require_auth(request)
        return admin_result("upgradeTo", engine.authorize_upgrade(sender, body.implementation))

    @app.post("/api/admin/max-games-per-day")
    async def set_max_games_per_day(body: DailyLimitRequest, request: Request) -> AdminActionResponse:
        sender = require_auth(request)
        return admin_result("setMaxGamesPerDay", engine.set_max_games_per_day(sender, body.limit))

    # ===== LEDGER HOST (OWNER ONLY) =====
    # SECURITY: the clock drives every timelock and deadline, so only the owner moves it

    @app.get("/api/chain")
    async def chain_info():
        chain = engine.chain
        return {
            "block_number": chain.block_number,
            "timestamp": chain.timestamp,
            "latest_blockhash": chain.blockhash(chain.block_number - 1),
        }

    @app.post("/api/chain/mine")
    async def mine(body: MineRequest, request: Request):
        require_owner(request)
        engine.chain.mine(body.blocks)
        persist()
        return {"block_number": engine.chain.block_number, "timestamp": engine.chain.timestamp}

    @app.post("/api/chain/advance")
    async def advance_time(body: AdvanceTimeRequest, request: Request):
        require_owner(request)
        engine.chain.advance_time(body.seconds)
        persist()
        return {"block_number": engine.chain.block_number, "timestamp": engine.chain.timestamp}

    @app.post("/api/chain/faucet")
    async def faucet(body: FaucetRequest, request: Request):
        require_owner(request)
        require_address(body.owner, "owner")
        engine.chain.mint(body.asset, body.owner, body.amount)
        persist()
        return {"owner": body.owner, "balance": engine.chain.balance_of(body.asset, body.owner)}

    @app.get("/api/chain/balance/{owner}")
    async def balance(owner: str, asset: str = NATIVE_ASSET):
        return {"owner": owner, "asset": asset, "balance": engine.chain.balance_of(asset, owner)}

    return app


# ===== MAIN =====

if __name__ == "__main__":
    import uvicorn

    logger.info("="*50)
    logger.info("Coinflip Escrow API Starting...")
    logger.info("="*50)

    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
