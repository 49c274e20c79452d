"""
Registry of assets eligible for wagering.
"""
import logging
from typing import Dict

from ..errors import ValidationError
from ..security.guard import Revertible
from ..constants import NATIVE_ASSET

logger = logging.getLogger(__name__)


class WhitelistRegistry(Revertible):
    """Asset id -> eligibility. The native asset starts eligible."""

    def __init__(self):
        self.allowed: Dict[str, bool] = {NATIVE_ASSET: True}

    def is_allowed(self, asset: str) -> bool:
        return self.allowed.get(asset, False)

    def require(self, asset: str):
        if not self.is_allowed(asset):
            raise ValidationError("token !whitelisted")

    def set(self, asset: str, allowed: bool):
        self._put(self.allowed, asset, allowed)
        logger.info(f"[WHITELIST] {asset} -> {'allowed' if allowed else 'blocked'}")
