"""
Wallet sessions for the HTTP surface.

SECURITY: A caller proves control of an identity by signing a one-time
challenge with the identity's ed25519 key. The signed challenge is exchanged
for a bearer session token, and every mutating request takes its sender from
that session. Nothing in a request body can name the caller.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import base58
from solders.pubkey import Pubkey
from solders.signature import Signature

from ..errors import AuthorizationError, ValidationError
from ..utils.validation import is_valid_address

logger = logging.getLogger(__name__)

CHALLENGE_TTL = 5 * 60  # Seconds a login challenge stays valid
SESSION_DURATION = 7 * 24 * 60 * 60
SIGNATURE_BYTES = 64


def login_message(wallet: str, nonce: str) -> str:
    """Text a wallet signs to open a session."""
    return f"Sign in to Coinflip Escrow\nWallet: {wallet}\nNonce: {nonce}"


def verify_wallet_signature(wallet: str, message: str, signature: str) -> bool:
    """Check a base58 ed25519 signature of message by wallet.

    Args:
        wallet: Base58 public key
        message: Signed text
        signature: Base58 encoded signature

    Returns:
        True if the signature is valid
    """
    ok, _ = is_valid_address(wallet)
    if not ok:
        return False
    try:
        raw = base58.b58decode(signature)
    except ValueError:
        return False
    if len(raw) != SIGNATURE_BYTES:
        return False
    return Signature.from_bytes(raw).verify(Pubkey.from_string(wallet), message.encode("utf-8"))


@dataclass
class Session:
    wallet: str
    expires_at: int


class SessionStore:
    """Login challenges and bearer sessions, held in memory."""

    def __init__(
        self,
        session_ttl: int = SESSION_DURATION,
        challenge_ttl: int = CHALLENGE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.session_ttl = session_ttl
        self.challenge_ttl = challenge_ttl
        self._clock = clock
        self._challenges: Dict[str, Tuple[str, int]] = {}  # wallet -> (message, expires_at)
        self._sessions: Dict[str, Session] = {}  # token -> session

    def _now(self) -> int:
        return int(self._clock())

    def challenge(self, wallet: str) -> Tuple[str, int]:
        """Issue a fresh challenge for a wallet, replacing any pending one.

        Returns:
            Tuple of (message to sign, expires_at)
        """
        ok, _ = is_valid_address(wallet)
        if not ok:
            raise ValidationError("bad address")

        message = login_message(wallet, secrets.token_urlsafe(16))
        expires_at = self._now() + self.challenge_ttl
        self._challenges[wallet] = (message, expires_at)
        return message, expires_at

    def login(self, wallet: str, signature: str) -> Tuple[str, int]:
        """Exchange a signed challenge for a session token.

        The challenge is consumed whether or not the signature verifies.

        Returns:
            Tuple of (session token, expires_at)

        Raises:
            AuthorizationError: No pending challenge, expired, or bad signature
        """
        pending = self._challenges.pop(wallet, None)
        if pending is None:
            raise AuthorizationError("no challenge")
        message, expires_at = pending
        if self._now() > expires_at:
            raise AuthorizationError("challenge expired")
        if not verify_wallet_signature(wallet, message, signature):
            logger.warning(f"[AUTH] Bad login signature for {wallet}")
            raise AuthorizationError("bad signature")

        token = secrets.token_urlsafe(32)
        session = Session(wallet=wallet, expires_at=self._now() + self.session_ttl)
        self._sessions[token] = session
        logger.info(f"[AUTH] Session opened for {wallet}")
        return token, session.expires_at

    def identity(self, token: Optional[str]) -> Optional[str]:
        """Wallet behind a live session token, or None."""
        if not token:
            return None
        session = self._sessions.get(token)
        if session is None:
            return None
        if self._now() > session.expires_at:
            del self._sessions[token]
            return None
        return session.wallet

    def logout(self, token: str) -> bool:
        return self._sessions.pop(token, None) is not None
