"""
Stake escrow and pull-payment ledger.

SECURITY: Winnings and refunds are never pushed to players. They are booked
into a claimable balance first and withdrawn by the owner of that balance.
Every outgoing transfer happens after the internal bookkeeping is written, so
a reentrant receiver always observes the final state.
"""
import logging
from typing import Dict, Tuple

from ..errors import PaymentError, ValidationError
from ..security.audit import EventType
from ..security.guard import Revertible
from ..constants import NATIVE_ASSET

logger = logging.getLogger(__name__)


class StakeLedger(Revertible):
    """Escrow collection, payouts and the claimable-balance table."""

    def __init__(self, chain, address: str, events):
        self.chain = chain
        self.address = address  # Engine account that holds escrowed funds
        self.events = events
        self.claimable: Dict[Tuple[str, str], int] = {}  # (owner, asset) -> amount

    def collect(self, asset: str, amount: int, payer: str, attached_value: int):
        """Escrow a stake from the payer.

        SECURITY:
        - Native stakes must arrive as exactly `amount` of attached value
        - Token stakes must not carry native value
        - Token stakes are measured by balance delta, which rejects
          fee-on-transfer tokens that would underfund the pool

        Args:
            asset: Asset id (NATIVE_ASSET or a token)
            amount: Stake in base units
            payer: Identity the stake is pulled from
            attached_value: Native value sent with the call

        Raises:
            ValidationError: On wrong attached value or short token delivery
            PaymentError: If the token pull fails
        """
        if asset == NATIVE_ASSET:
            if attached_value != amount:
                raise ValidationError("bad msg.value")
            logger.info(f"[ESCROW] Collected {amount} native from {payer}")
            return

        if attached_value != 0:
            raise ValidationError("eth sent")

        before = self.chain.balance_of(asset, self.address)
        if not self.chain.transfer_from(asset, self.address, payer, self.address, amount):
            raise PaymentError("transferFrom failed")
        received = self.chain.balance_of(asset, self.address) - before

        if received != amount:
            logger.warning(f"[ESCROW] Token {asset} delivered {received} of {amount} from {payer}")
            raise ValidationError("fee-on-transfer")

        logger.info(f"[ESCROW] Collected {amount} of {asset} from {payer}")

    def payout(self, asset: str, to: str, amount: int):
        """Send funds out of escrow.

        Callers must have finished all bookkeeping before calling this.

        Raises:
            PaymentError: If the native call or token transfer fails
        """
        if asset == NATIVE_ASSET:
            if not self.chain.send_native(self.address, to, amount):
                raise PaymentError("eth send failed")
        elif not self.chain.transfer(asset, self.address, to, amount):
            raise PaymentError("token transfer failed")

        logger.info(f"[ESCROW] Paid {amount} of {asset} to {to}")

    def credit(self, owner: str, asset: str, amount: int):
        """Book an amount into owner's claimable balance."""
        if amount <= 0:
            return
        key = (owner, asset)
        self._put(self.claimable, key, self.claimable.get(key, 0) + amount)
        logger.info(f"[ESCROW] Booked {amount} of {asset} claimable by {owner}")

    def claimable_of(self, owner: str, asset: str) -> int:
        return self.claimable.get((owner, asset), 0)

    def claim(self, asset: str, caller: str) -> int:
        """Withdraw the caller's whole claimable balance for an asset.

        Args:
            asset: Asset to withdraw
            caller: Identity withdrawing its own balance

        Returns:
            Amount paid

        Raises:
            ValidationError: If nothing is claimable
            PaymentError: If the transfer fails (the balance stays claimable)
        """
        amount = self.claimable_of(caller, asset)
        if amount == 0:
            raise ValidationError("no funds")

        # Zero before paying out
        self._drop(self.claimable, (caller, asset))
        self.payout(asset, caller, amount)

        self.events.emit(EventType.FUNDS_CLAIMED, owner=caller, asset=asset, amount=amount)
        return amount

    def total_claimable(self, asset: str) -> int:
        """Sum of all claimable balances for an asset."""
        return sum(amount for (_, a), amount in self.claimable.items() if a == asset)
