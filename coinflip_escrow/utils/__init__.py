"""Utility modules for the settlement engine."""
from .validation import is_valid_address, is_valid_amount, is_valid_commitment, is_valid_reveal
from .formatting import format_amount, format_timestamp, truncate_address

__all__ = [
    "is_valid_address",
    "is_valid_amount",
    "is_valid_commitment",
    "is_valid_reveal",
    "format_amount",
    "format_timestamp",
    "truncate_address",
]
