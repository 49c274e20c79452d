"""
Protocol fee booking and accrual.
"""
import logging
from typing import Dict, Tuple

from ..errors import ValidationError
from ..security.guard import Revertible
from ..constants import BPS_DENOMINATOR

logger = logging.getLogger(__name__)


def split_pool(pool: int, fee_bps: int) -> Tuple[int, int]:
    """Split a resolved pool into (fee, payout).

    The fee rounds down, so payout + fee always equals the pool exactly.

    Args:
        pool: Total escrowed amount in base units
        fee_bps: Fee in basis points (200 = 2%)

    Returns:
        Tuple of (fee, payout)
    """
    fee = pool * fee_bps // BPS_DENOMINATOR
    return fee, pool - fee


class FeeAccumulator(Revertible):
    """Per-asset protocol revenue, released only by a timelocked withdrawal."""

    def __init__(self, fee_bps: int):
        if not 0 <= fee_bps <= BPS_DENOMINATOR:
            raise ValueError(f"Fee must be between 0 and {BPS_DENOMINATOR} bps, got {fee_bps}")
        self.fee_bps = fee_bps
        self.accrued: Dict[str, int] = {}

    def accrued_of(self, asset: str) -> int:
        return self.accrued.get(asset, 0)

    def accrue(self, asset: str, amount: int):
        self._put(self.accrued, asset, self.accrued_of(asset) + amount)

    def debit(self, asset: str, amount: int):
        """Remove a withdrawal from the accrued balance.

        Raises:
            ValidationError: If amount is not positive or exceeds the balance
        """
        available = self.accrued_of(asset)
        if amount <= 0 or amount > available:
            raise ValidationError("bad amt")
        self._put(self.accrued, asset, available - amount)
        logger.info(f"[FEES] Debited {amount} of {asset} ({available - amount} remaining)")
