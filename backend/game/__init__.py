"""Game logic module for Coinflip."""
from .coinflip import (
    BetResult,
    FlipResult,
    flip_coin,
    verify_bet,
    calculate_payout,
    get_next_hash,
    settle_bet,
    reconcile_pending_settlements,
)
from .errors import (
    BetError,
    BetValidationError,
    UserNotFoundError,
    WalletNotFoundError,
    InsufficientFundsError,
    MissingCommitmentError,
    BetAlreadySettledError,
    ConfigurationError,
    TransferError,
    FeatureDisabledError,
)
from .token_ops import TokenLedger, generate_wallet
from .wallets import (
    get_user,
    get_user_and_wallet,
    create_user_wallet,
    mint_test_tokens,
)

__all__ = [
    "BetResult",
    "FlipResult",
    "flip_coin",
    "verify_bet",
    "calculate_payout",
    "get_next_hash",
    "settle_bet",
    "reconcile_pending_settlements",
    "BetError",
    "BetValidationError",
    "UserNotFoundError",
    "WalletNotFoundError",
    "InsufficientFundsError",
    "MissingCommitmentError",
    "BetAlreadySettledError",
    "ConfigurationError",
    "TransferError",
    "FeatureDisabledError",
    "TokenLedger",
    "generate_wallet",
    "get_user",
    "get_user_and_wallet",
    "create_user_wallet",
    "mint_test_tokens",
]
