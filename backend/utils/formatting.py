"""
Formatting utilities for display.
"""
from decimal import Decimal, ROUND_FLOOR

from config import TOKEN_DECIMALS, TOKEN_SYMBOL


def to_token_amount(amount: float, decimals: int = TOKEN_DECIMALS) -> int:
    """Convert a user-facing token amount to raw on-chain units (floored)."""
    raw = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(raw.to_integral_value(rounding=ROUND_FLOOR))


def from_token_amount(raw_amount: int, decimals: int = TOKEN_DECIMALS) -> float:
    """Convert raw on-chain units to a user-facing token amount."""
    return raw_amount / (10 ** decimals)


def format_token(amount: float) -> str:
    """Format token amount for display."""
    if abs(amount) >= 1000:
        return f"{amount:,.2f} {TOKEN_SYMBOL}"
    elif abs(amount) >= 1:
        return f"{amount:.4f} {TOKEN_SYMBOL}"
    else:
        return f"{amount:.6f} {TOKEN_SYMBOL}"


def truncate_address(address: str, start: int = 4, end: int = 4) -> str:
    """Truncate wallet address or hash for display."""
    if len(address) <= start + end:
        return address
    return f"{address[:start]}...{address[-end:]}"


def format_win_rate(games_won: int, games_lost: int) -> str:
    """Format win rate percentage."""
    games_played = games_won + games_lost
    if games_played == 0:
        return "0.0%"
    win_rate = (games_won / games_played) * 100
    return f"{win_rate:.1f}%"
