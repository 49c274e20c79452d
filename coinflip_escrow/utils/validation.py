"""
Input validation utilities for security.
"""
from typing import Tuple

import base58

from ..constants import LAMPORTS_PER_SOL

REVEAL_LENGTH = 32
COMMITMENT_LENGTH = 64  # sha256 hex digest
HEX_DIGITS = "0123456789abcdefABCDEF"
BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def is_valid_address(address: str) -> Tuple[bool, str]:
    """Validate a base58 identity or asset id.

    Args:
        address: Address to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not address:
        return False, "Address is required"

    if not isinstance(address, str):
        return False, "Address must be a string"

    # 32-byte keys encode to 32-44 base58 characters
    if len(address) < 32 or len(address) > 44:
        return False, "Invalid address length"

    if not all(c in BASE58_ALPHABET for c in address):
        return False, "Address contains invalid characters"

    try:
        decoded = base58.b58decode(address)
    except ValueError as e:
        return False, f"Failed to decode address: {e}"
    if len(decoded) != 32:
        return False, "Invalid address format (must be 32 bytes when decoded)"

    return True, ""


def is_valid_amount(amount: int, max_amount: int = 1_000_000 * LAMPORTS_PER_SOL) -> Tuple[bool, str]:
    """Validate a stake in base units.

    Args:
        amount: Amount in base units
        max_amount: Maximum allowed amount

    Returns:
        Tuple of (is_valid, error_message)
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        return False, "Amount must be an integer number of base units"

    if amount <= 0:
        return False, "Amount must be greater than 0"

    if amount > max_amount:
        return False, f"Amount cannot exceed {max_amount}"

    return True, ""


def is_valid_reveal(reveal: bytes) -> Tuple[bool, str]:
    """Validate a revealed epoch secret.

    Args:
        reveal: Secret bytes

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(reveal, (bytes, bytearray)):
        return False, "Reveal must be bytes"

    if len(reveal) != REVEAL_LENGTH:
        return False, f"Reveal must be exactly {REVEAL_LENGTH} bytes"

    return True, ""


def is_valid_commitment(commitment: str) -> Tuple[bool, str]:
    """Validate an epoch commitment (sha256 hex digest).

    Args:
        commitment: Commitment to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(commitment, str):
        return False, "Commitment must be a string"

    if len(commitment) != COMMITMENT_LENGTH:
        return False, f"Commitment must be {COMMITMENT_LENGTH} hex characters"

    if not all(c in HEX_DIGITS for c in commitment):
        return False, "Commitment must be hex encoded"

    return True, ""
