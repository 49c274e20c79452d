"""
Error taxonomy for the settlement engine.

Every failure aborts the whole entry point. The `reason` string is the short,
stable code callers match on (e.g. "bad state", "no funds").
"""


class CoinflipError(Exception):
    """Base class for all engine rejections."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(CoinflipError):
    """Bad asset, zero stake, wrong attached funds, fee-on-transfer mismatch."""


class StateError(CoinflipError):
    """Wrong game state for the requested transition."""


class PausedError(StateError):
    """Entry point disabled while the engine is paused."""


class ReentrancyError(StateError):
    """Nested call into the mutating surface while another call is in progress."""


class AuthorizationError(CoinflipError):
    """Caller is not the owner, signer or creator the action requires."""


class TimingError(CoinflipError):
    """Deadline not reached or already passed. Safe to retry later."""


class EntropyError(CoinflipError):
    """Reveal does not match its commitment, or the epoch has no commitment."""


class PaymentError(CoinflipError):
    """An outgoing transfer failed; nothing was booked."""
