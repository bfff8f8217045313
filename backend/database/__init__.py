"""Database module for the Coinflip Mini App."""
from .models import (
    User,
    Wallet,
    Commitment,
    CommitmentStore,
    GameHistory,
    Transaction,
    Settlement,
    CoinSide,
    BetOutcome,
)
from .repo import Database, ConcurrentModificationError, NegativeBalanceError

__all__ = [
    "User",
    "Wallet",
    "Commitment",
    "CommitmentStore",
    "GameHistory",
    "Transaction",
    "Settlement",
    "CoinSide",
    "BetOutcome",
    "Database",
    "ConcurrentModificationError",
    "NegativeBalanceError",
]
