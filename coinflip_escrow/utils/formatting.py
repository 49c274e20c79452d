"""
Formatting utilities for display.
"""
from datetime import datetime, timezone
from typing import Optional

from ..constants import LAMPORTS_PER_SOL


def format_amount(base_units: int) -> str:
    """Format a base-unit amount in whole units for display."""
    amount = base_units / LAMPORTS_PER_SOL
    if amount >= 1000:
        return f"{amount:,.2f}"
    elif amount >= 1:
        return f"{amount:.4f}"
    else:
        return f"{amount:.6f}"


def format_timestamp(ts: Optional[int]) -> str:
    """Format a unix timestamp for display."""
    if not ts:
        return "N/A"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def truncate_address(address: Optional[str], start: int = 4, end: int = 4) -> str:
    """Truncate an address for display."""
    if not address:
        return "-"
    if len(address) <= start + end:
        return address
    return f"{address[:start]}...{address[-end:]}"
