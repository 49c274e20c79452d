"""
Ledger host for the settlement engine.

Simulates the parts of a chain the engine depends on: block height, block
timestamp, a bounded window of retrievable block hashes, native balances and
fungible token balances. Value sent to an identity with a registered receiver
hook runs that hook, which is how contract recipients (and reentrancy attempts)
are modeled.
"""
import hashlib
import logging
import time
from typing import Callable, Dict, Optional, Tuple

import base58
from solders.keypair import Keypair

from ..errors import PaymentError
from ..constants import NATIVE_ASSET, LAMPORTS_PER_SOL, BPS_DENOMINATOR
from ..security.guard import Revertible

logger = logging.getLogger(__name__)

# Hook signature: hook(sender, amount)
ReceiverHook = Callable[[str, int], None]


def generate_address() -> str:
    """Generate a fresh base58 identity."""
    return str(Keypair().pubkey())


class Chain(Revertible):
    """In-process chain with blocks, native value and tokens."""

    def __init__(
        self,
        genesis_time: Optional[int] = None,
        blockhash_window: int = 256,
        seconds_per_block: int = 12,
    ):
        self.block_number = 0
        self.timestamp = int(genesis_time if genesis_time is not None else time.time())
        self.blockhash_window = blockhash_window
        self.seconds_per_block = seconds_per_block
        self._hashes: Dict[int, str] = {0: self._hash_block(0, "", self.timestamp)}

        self.native: Dict[str, int] = {}
        self.tokens: Dict[str, Dict] = {}  # token -> {"symbol", "transfer_fee_bps"}
        self.token_balances: Dict[str, Dict[str, int]] = {}
        self.allowances: Dict[str, Dict[Tuple[str, str], int]] = {}

        self._receivers: Dict[str, ReceiverHook] = {}

    # === Blocks ===

    @staticmethod
    def _hash_block(number: int, parent: str, timestamp: int) -> str:
        digest = hashlib.sha256(f"{parent}:{number}:{timestamp}".encode()).digest()
        return base58.b58encode(digest).decode("utf-8")

    def mine(self, blocks: int = 1, seconds_per_block: Optional[int] = None):
        """Produce new blocks, advancing time by seconds_per_block each."""
        step = self.seconds_per_block if seconds_per_block is None else seconds_per_block
        for _ in range(blocks):
            parent = self._hashes[self.block_number]
            self.block_number += 1
            self.timestamp += step
            self._hashes[self.block_number] = self._hash_block(self.block_number, parent, self.timestamp)
            # Only the retrievable window is kept
            self._hashes.pop(self.block_number - self.blockhash_window - 1, None)

    def advance_time(self, seconds: int):
        """Jump the clock forward and mine one block at the new time."""
        self.timestamp += seconds
        self.mine(1, seconds_per_block=0)

    def blockhash(self, number: int) -> Optional[str]:
        """Hash of a past block, or None if it is current/future or aged out."""
        if number >= self.block_number or number < self.block_number - self.blockhash_window:
            return None
        return self._hashes.get(number)

    def recent_hashes(self) -> Dict[int, str]:
        """Hashes still needed to serve `blockhash` and to mine the next block."""
        return dict(self._hashes)

    def restore_blocks(self, block_number: int, timestamp: int, hashes: Dict[int, str]):
        """Resume from a saved height. The head block's hash must be present."""
        if block_number not in hashes:
            raise ValueError(f"Missing hash for head block {block_number}")
        self.block_number = block_number
        self.timestamp = timestamp
        self._hashes = dict(hashes)

    # === Balances ===

    def balance_of(self, asset: str, owner: str) -> int:
        if asset == NATIVE_ASSET:
            return self.native.get(owner, 0)
        return self.token_balances.get(asset, {}).get(owner, 0)

    def mint(self, asset: str, owner: str, amount: int):
        """Credit new funds to an identity (faucet)."""
        if asset == NATIVE_ASSET:
            self._put(self.native, owner, self.native.get(owner, 0) + amount)
        else:
            self._require_token(asset)
            balances = self.token_balances[asset]
            self._put(balances, owner, balances.get(owner, 0) + amount)
        logger.debug(f"[CHAIN] Minted {amount} of {asset} to {owner}")

    def register_receiver(self, owner: str, hook: Optional[ReceiverHook]):
        """Install (or clear with None) code that runs when owner receives native value."""
        if hook is None:
            self._receivers.pop(owner, None)
        else:
            self._receivers[owner] = hook

    # === Native value ===

    def move_native(self, src: str, dst: str, amount: int):
        """Move attached value with a call. Raises if the sender cannot cover it."""
        if amount < 0 or self.native.get(src, 0) < amount:
            raise PaymentError("insufficient balance")
        self._put(self.native, src, self.native.get(src, 0) - amount)
        self._put(self.native, dst, self.native.get(dst, 0) + amount)

    def send_native(self, src: str, dst: str, amount: int) -> bool:
        """Value-bearing call to dst. Returns False if the call fails.

        A failing receiver hook undoes everything done during the call.
        """
        if amount < 0 or self.native.get(src, 0) < amount:
            return False

        checkpoint = self.snapshot()
        self._put(self.native, src, self.native[src] - amount)
        self._put(self.native, dst, self.native.get(dst, 0) + amount)

        hook = self._receivers.get(dst)
        if hook is not None:
            try:
                hook(src, amount)
            except Exception as e:
                self.restore(checkpoint)
                logger.warning(f"[CHAIN] Receiver {dst} rejected {amount} from {src}: {e}")
                return False
        self.commit(checkpoint)
        return True

    # === Tokens ===

    def create_token(self, symbol: str, transfer_fee_bps: int = 0) -> str:
        """Deploy a fungible token. A non-zero fee burns part of every transfer."""
        token = generate_address()
        self._put(self.tokens, token, {"symbol": symbol, "transfer_fee_bps": transfer_fee_bps})
        self._put(self.token_balances, token, {})
        self._put(self.allowances, token, {})
        logger.info(f"[CHAIN] Created token {symbol} at {token} (fee {transfer_fee_bps} bps)")
        return token

    def _require_token(self, token: str):
        if token not in self.tokens:
            raise PaymentError("unknown token")

    def approve(self, token: str, owner: str, spender: str, amount: int):
        self._require_token(token)
        self._put(self.allowances[token], (owner, spender), amount)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get(token, {}).get((owner, spender), 0)

    def _move_token(self, token: str, src: str, dst: str, amount: int) -> bool:
        balances = self.token_balances[token]
        if amount < 0 or balances.get(src, 0) < amount:
            return False
        fee = amount * self.tokens[token]["transfer_fee_bps"] // BPS_DENOMINATOR
        self._put(balances, src, balances[src] - amount)
        self._put(balances, dst, balances.get(dst, 0) + amount - fee)
        return True

    def transfer(self, token: str, src: str, dst: str, amount: int) -> bool:
        """Token transfer from src. Returns False on failure."""
        if token not in self.tokens:
            return False
        return self._move_token(token, src, dst, amount)

    def transfer_from(self, token: str, spender: str, src: str, dst: str, amount: int) -> bool:
        """Allowance-based pull. Returns False on failure."""
        if token not in self.tokens:
            return False
        allowed = self.allowance(token, src, spender)
        if allowed < amount:
            return False
        if not self._move_token(token, src, dst, amount):
            return False
        self._put(self.allowances[token], (src, spender), allowed - amount)
        return True


__all__ = ["Chain", "generate_address", "NATIVE_ASSET", "LAMPORTS_PER_SOL"]
