"""Utility modules for the Coinflip Mini App."""
from .encryption import generate_encryption_key, encrypt_private_key, decrypt_private_key
from .formatting import (
    to_token_amount,
    from_token_amount,
    format_token,
    truncate_address,
    format_win_rate,
)

__all__ = [
    "generate_encryption_key",
    "encrypt_private_key",
    "decrypt_private_key",
    "to_token_amount",
    "from_token_amount",
    "format_token",
    "truncate_address",
    "format_win_rate",
]
