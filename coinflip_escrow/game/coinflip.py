"""
Core coinflip settlement engine.

Two players escrow equal stakes, the trusted signer resolves the flip with a
committed secret mixed with a future blockhash, and winnings are booked for
pull-based withdrawal. Every privileged change goes through the timelock.
"""
import logging
from typing import Dict, List, Optional, Tuple, Union

from ..config import EngineSettings
from ..constants import NATIVE_ASSET, VERSION
from ..database.models import Game, GameState, CoinSide, RngSnapshot
from ..errors import (
    AuthorizationError,
    PausedError,
    StateError,
    TimingError,
    ValidationError,
)
from ..security.audit import EventLog, EventType, EventSeverity
from ..security.guard import Revertible, entrypoint
from ..security.timelock import TimelockGate, timelocked
from ..utils.validation import is_valid_address, is_valid_commitment, is_valid_reveal
from .chain import Chain, generate_address
from .escrow import StakeLedger
from .fees import FeeAccumulator
from .randomness import CommitRevealBlockhash, EntropySource, EpochStore, derive_seed
from .registry import GameRegistry
from .resolution import (
    EmergencyResolution,
    Resolution,
    ResolutionEngine,
    Settlement,
    SignerResolution,
    finalize,
)
from .whitelist import WhitelistRegistry

logger = logging.getLogger(__name__)


class Controls(Revertible):
    """Owner-controlled switches."""

    _revertible = ("paused", "implementation", "max_games_per_day")

    def __init__(self, max_games_per_day: int):
        self.paused = False
        self.implementation: Optional[str] = None
        self.max_games_per_day = max_games_per_day


def _coin_side(side: Union[CoinSide, int]) -> CoinSide:
    try:
        return CoinSide(side)
    except ValueError:
        raise ValidationError("bad side")


def _address(address: str) -> str:
    ok, _ = is_valid_address(address)
    if not ok:
        raise ValidationError("bad address")
    return address


def _commitment(commitment: str) -> str:
    ok, _ = is_valid_commitment(commitment)
    if not ok:
        raise ValidationError("bad commitment")
    return commitment.lower()


class CoinFlipGame:
    """Two-party wager settlement engine.

    Mutating methods take the caller identity as `sender`. `create_game` and
    `join_game` also accept attached native value as the keyword `value`.
    Owner actions are timelocked: they return False when queued and True when
    executed.
    """

    def __init__(
        self,
        chain: Chain,
        owner: str,
        settings: Optional[EngineSettings] = None,
        entropy: Optional[EntropySource] = None,
        address: Optional[str] = None,
    ):
        self.settings = settings or EngineSettings()
        self.chain = chain
        self.owner = owner
        self.address = address or generate_address()

        self.events = EventLog(chain)
        self.timelock = TimelockGate(chain, self.events, self.settings.timelock_delay)
        self.whitelist = WhitelistRegistry()
        self.ledger = StakeLedger(chain, self.address, self.events)
        self.epochs = EpochStore(self.events)
        self.fees = FeeAccumulator(self.settings.fee_bps)
        self.registry = GameRegistry()
        self.controls = Controls(self.settings.max_games_per_day)
        self.resolver = ResolutionEngine(chain, self.epochs, entropy or CommitRevealBlockhash())

        self._in_call = False
        logger.info(f"[GAME] Engine {self.address} initialized (owner {owner}, v{VERSION})")

    def revertibles(self):
        return (
            self.chain,
            self.events,
            self.timelock,
            self.whitelist,
            self.ledger,
            self.epochs,
            self.fees,
            self.registry,
            self.controls,
        )

    def _when_not_paused(self):
        if self.controls.paused:
            raise PausedError("paused")

    def _only_signer(self, sender: str):
        if self.epochs.trusted_signer is None or sender != self.epochs.trusted_signer:
            raise AuthorizationError("!signer")

    # === Game lifecycle ===

    @entrypoint(payable=True)
    def create_game(
        self,
        sender: str,
        asset: str,
        stake: int,
        side: Union[CoinSide, int],
        *,
        value: int = 0,
    ) -> int:
        """Open a wager and escrow the creator's stake.

        Args:
            sender: Creator identity
            asset: Asset to wager (NATIVE_ASSET or a whitelisted token)
            stake: Per-player stake in base units
            side: Creator's call (HEADS or TAILS)
            value: Attached native value (must equal stake for native games)

        Returns:
            New game ID
        """
        self._when_not_paused()
        self.whitelist.require(asset)
        if isinstance(stake, bool) or not isinstance(stake, int) or stake <= 0:
            raise ValidationError("zero stake")
        side = _coin_side(side)

        now = self.chain.timestamp
        self.registry.record_play(sender, now, self.controls.max_games_per_day)
        self.ledger.collect(asset, stake, sender, value)
        game = self.registry.create(sender, asset, stake, side, now)

        self.events.emit(
            EventType.GAME_CREATED,
            game_id=game.game_id,
            creator=sender,
            asset=asset,
            stake=stake,
            side=side.value,
        )
        return game.game_id

    @entrypoint(payable=True)
    def join_game(self, sender: str, game_id: int, *, value: int = 0) -> RngSnapshot:
        """Take the other side of an open wager.

        Escrows the joiner's stake and fixes the randomness inputs: the current
        epoch, a seed over the game identity, and the next block, whose hash
        nobody can know yet.

        Returns:
            RNG snapshot for the game
        """
        self._when_not_paused()
        game = self.registry.get(game_id)
        self.registry.require_state(game, GameState.CREATED)

        now = self.chain.timestamp
        if now > game.created_at + self.settings.join_window:
            raise TimingError("expired")
        if sender == game.creator:
            raise StateError("self join")
        self.whitelist.require(game.asset)

        self.registry.record_play(sender, now, self.controls.max_games_per_day)
        self.ledger.collect(game.asset, game.stake, sender, value)

        game.joiner = sender
        game.pool += game.stake
        game.resolve_deadline = now + self.settings.resolve_grace
        snapshot = RngSnapshot(
            seed=derive_seed(game.game_id, game.creator, sender, game.asset, game.stake),
            target_block=self.chain.block_number + 1,
            epoch=self.epochs.current_epoch,
        )
        self.registry.set_rng(game_id, snapshot)
        game.state = GameState.RESOLVING

        self.events.emit(
            EventType.GAME_JOINED,
            game_id=game_id,
            joiner=sender,
            target_block=snapshot.target_block,
            epoch=snapshot.epoch,
        )
        return snapshot

    @entrypoint
    def cancel_game(self, sender: str, game_id: int) -> int:
        """Cancel an unjoined game and return the full stake to its creator.

        Returns:
            Amount refunded
        """
        game = self.registry.get(game_id)
        self.registry.require_state(game, GameState.CREATED)
        if sender != game.creator:
            raise AuthorizationError("!creator")

        refund = game.pool
        game.pool = 0
        game.state = GameState.CANCELLED
        self.registry.bump("cancelled")

        self.ledger.payout(game.asset, game.creator, refund)
        self.events.emit(EventType.GAME_CANCELLED, game_id=game_id, refund=refund)
        return refund

    @entrypoint
    def claim_refund(self, sender: str, game_id: int) -> Tuple[int, int]:
        """Split a stuck game's pool back to both players after the grace deadline.

        Anyone may call this. Refunds are booked as claimable balances.

        Returns:
            Tuple of (creator share, joiner share)
        """
        game = self.registry.get(game_id)
        self.registry.require_state(game, GameState.RESOLVING)
        if self.chain.timestamp <= game.resolve_deadline:
            raise TimingError("grace")

        creator_share = game.pool // 2
        joiner_share = game.pool - creator_share
        self.ledger.credit(game.creator, game.asset, creator_share)
        self.ledger.credit(game.joiner, game.asset, joiner_share)
        game.pool = 0
        game.state = GameState.CANCELLED
        self.registry.bump("refunded")

        self.events.emit(
            EventType.REFUNDED,
            game_id=game_id,
            caller=sender,
            creator_amount=creator_share,
            joiner_amount=joiner_share,
        )
        return creator_share, joiner_share

    # === Resolution ===

    def _resolve(self, game_id: int, resolution: Resolution) -> Settlement:
        game = self.registry.get(game_id)
        self.registry.require_state(game, GameState.RESOLVING)

        side, entropy = self.resolver.winning_side(game, self.registry.rng_of(game_id), resolution)
        settlement = finalize(game, side, self.fees, self.ledger, entropy)
        self.registry.bump("resolved")
        return settlement

    @entrypoint
    def resolve_by_signer(self, sender: str, game_id: int, reveal: bytes) -> Settlement:
        """Resolve with the secret committed for the game's epoch.

        Args:
            sender: Trusted signer
            game_id: Game in RESOLVING
            reveal: 32-byte secret whose sha256 is the epoch commitment

        Returns:
            Settlement with winner, fee and payout
        """
        self._only_signer(sender)
        ok, _ = is_valid_reveal(reveal)
        if not ok:
            raise ValidationError("bad reveal")

        settlement = self._resolve(game_id, SignerResolution(bytes(reveal)))
        rng = self.registry.rng_of(game_id)

        self.events.emit(
            EventType.RESOLVED_WITH_SIGNER,
            game_id=game_id,
            epoch=rng.epoch,
            reveal=bytes(reveal).hex(),
            entropy=settlement.entropy,
        )
        self._emit_resolved(settlement)
        return settlement

    @entrypoint
    def emergency_resolve(self, sender: str, game_id: int, side: Union[CoinSide, int]) -> Settlement:
        """Signer override that settles a stuck game with a chosen side."""
        self._only_signer(sender)
        settlement = self._resolve(game_id, EmergencyResolution(_coin_side(side)))
        self._emit_resolved(settlement, EventSeverity.CRITICAL)
        return settlement

    def _emit_resolved(self, settlement: Settlement, severity: EventSeverity = EventSeverity.INFO):
        self.events.emit(
            EventType.GAME_RESOLVED,
            severity,
            game_id=settlement.game_id,
            winner=settlement.winner,
            side=settlement.winning_side.value,
            payout=settlement.payout,
            fee=settlement.fee,
        )

    # === Pull payments ===

    @entrypoint
    def claim_funds(self, sender: str, asset: str) -> int:
        """Withdraw the caller's claimable balance for an asset.

        Returns:
            Amount paid
        """
        return self.ledger.claim(asset, sender)

    # === Timelocked admin ===

    @entrypoint
    @timelocked("setWhitelist", asset=_address)
    def set_whitelist(self, sender: str, asset: str, allowed: bool):
        self.whitelist.set(asset, allowed)
        self.events.emit(EventType.WHITELIST_UPDATED, EventSeverity.WARNING, asset=asset, allowed=allowed)

    @entrypoint
    @timelocked("setTrustedSigner", signer=_address)
    def set_trusted_signer(self, sender: str, signer: str):
        self.epochs.set_signer(signer)

    @entrypoint
    @timelocked("commitServerSeed", commitment=_commitment)
    def commit_server_seed(self, sender: str, commitment: str, epoch: int):
        self.epochs.commit_seed(commitment, epoch)

    @entrypoint
    @timelocked("withdrawFees")
    def withdraw_fees(self, sender: str, asset: str, amount: int):
        self.fees.debit(asset, amount)
        self.ledger.payout(asset, self.owner, amount)
        self.events.emit(EventType.FEES_WITHDRAWN, EventSeverity.WARNING, asset=asset, amount=amount, to=self.owner)

    @entrypoint
    @timelocked("pause")
    def pause(self, sender: str):
        if self.controls.paused:
            raise PausedError("paused")
        self.controls.paused = True
        self.events.emit(EventType.PAUSED, EventSeverity.WARNING, by=sender)

    @entrypoint
    @timelocked("unpause")
    def unpause(self, sender: str):
        if not self.controls.paused:
            raise StateError("not paused")
        self.controls.paused = False
        self.events.emit(EventType.UNPAUSED, EventSeverity.WARNING, by=sender)

    @entrypoint
    @timelocked("upgradeTo", implementation=_address)
    def authorize_upgrade(self, sender: str, implementation: str):
        previous = self.controls.implementation
        self.controls.implementation = implementation
        self.events.emit(
            EventType.UPGRADE_AUTHORIZED,
            EventSeverity.WARNING,
            previous=previous,
            implementation=implementation,
        )

    @entrypoint
    @timelocked("setMaxGamesPerDay")
    def set_max_games_per_day(self, sender: str, limit: int):
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ValidationError("bad limit")
        self.controls.max_games_per_day = limit
        self.events.emit(EventType.DAILY_LIMIT_UPDATED, limit=limit)

    # === Queries ===

    @property
    def version(self) -> str:
        return VERSION

    @property
    def next_id(self) -> int:
        return self.registry.next_id

    @property
    def paused(self) -> bool:
        return self.controls.paused

    @property
    def current_epoch(self) -> int:
        return self.epochs.current_epoch

    @property
    def trusted_signer(self) -> Optional[str]:
        return self.epochs.trusted_signer

    @property
    def implementation(self) -> Optional[str]:
        return self.controls.implementation

    @property
    def max_games_per_day(self) -> int:
        return self.controls.max_games_per_day

    def get_game(self, game_id: int) -> Game:
        return self.registry.copy_of(game_id)

    def get_rng_snapshot(self, game_id: int) -> Optional[RngSnapshot]:
        return self.registry.rng_of(game_id)

    def list_games(self, start: int, count: int) -> List[Game]:
        return self.registry.list(start, count, self.settings.max_page_size)

    def epoch_commitment(self, epoch: int) -> Optional[str]:
        return self.epochs.commitment_of(epoch)

    def is_whitelisted(self, asset: str) -> bool:
        return self.whitelist.is_allowed(asset)

    def accrued_fee(self, asset: str) -> int:
        return self.fees.accrued_of(asset)

    def claimable(self, owner: str, asset: str) -> int:
        return self.ledger.claimable_of(owner, asset)

    def queued_at(self, action_id: str) -> Optional[int]:
        return self.timelock.queued_at(action_id)

    def daily_stats(self, identity: str) -> Tuple[int, int, int, int]:
        """(played today, max per day, remaining, next reset timestamp)."""
        return self.registry.daily_stats(identity, self.chain.timestamp, self.controls.max_games_per_day)

    def liabilities(self, asset: str) -> int:
        """Everything the engine owes for an asset: open pools, claimable balances and fees."""
        return (
            self.registry.open_pools(asset)
            + self.ledger.total_claimable(asset)
            + self.fees.accrued_of(asset)
        )

    def held_balance(self, asset: str = NATIVE_ASSET) -> int:
        return self.chain.balance_of(asset, self.address)

    def stats(self) -> Dict[str, object]:
        counters = self.registry.counters
        return {
            "games_created": self.registry.next_id,
            "games_resolved": counters.get("resolved", 0),
            "games_cancelled": counters.get("cancelled", 0),
            "games_refunded": counters.get("refunded", 0),
            "paused": self.controls.paused,
            "current_epoch": self.epochs.current_epoch,
        }
