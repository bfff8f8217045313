"""
Input validation for bet and wallet requests.

Each validator returns a tuple of (is_valid, error_message).
"""
import math
from typing import Tuple

from config import TOKEN_DECIMALS

VALID_CHOICES = ("heads", "tails")
MAX_CLIENT_SEED_LENGTH = 128


def is_valid_bet_amount(amount) -> Tuple[bool, str]:
    """Validate wager amount (user-facing units).

    Args:
        amount: Amount of game tokens

    Returns:
        Tuple of (is_valid, error_message)
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return False, "Invalid bet amount"

    if not math.isfinite(amount) or amount <= 0:
        return False, "Invalid bet amount"

    # Must be at least one raw unit
    if amount * (10 ** TOKEN_DECIMALS) < 1:
        return False, f"Bet amount must be at least {10 ** -TOKEN_DECIMALS:.{TOKEN_DECIMALS}f}"

    return True, ""


def is_valid_choice(choice) -> Tuple[bool, str]:
    """Validate coin side (case-insensitive)."""
    if not isinstance(choice, str) or choice.strip().lower() not in VALID_CHOICES:
        return False, "Invalid choice"
    return True, ""


def is_valid_nonce(nonce) -> Tuple[bool, str]:
    """Validate bet nonce (non-negative integer)."""
    if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce < 0:
        return False, "Invalid nonce"
    return True, ""


def is_valid_client_seed(client_seed) -> Tuple[bool, str]:
    """Validate client seed."""
    if not isinstance(client_seed, str) or not client_seed.strip():
        return False, "Client seed is required"

    if len(client_seed) > MAX_CLIENT_SEED_LENGTH:
        return False, f"Client seed cannot exceed {MAX_CLIENT_SEED_LENGTH} characters"

    if not client_seed.isprintable():
        return False, "Client seed contains invalid characters"

    return True, ""


def validate_bet(bet_amount, choice, client_seed, nonce) -> Tuple[bool, str]:
    """Validate all bet inputs, reporting the first failure."""
    for is_valid, error in (
        is_valid_bet_amount(bet_amount),
        is_valid_choice(choice),
        is_valid_client_seed(client_seed),
        is_valid_nonce(nonce),
    ):
        if not is_valid:
            return False, error
    return True, ""


def is_valid_mint_amount(amount, max_amount: float) -> Tuple[bool, str]:
    """Validate test-token mint amount."""
    is_valid, _ = is_valid_bet_amount(amount)
    if not is_valid:
        return False, "Invalid amount"

    if amount > max_amount:
        return False, f"Amount cannot exceed {max_amount}"

    return True, ""
