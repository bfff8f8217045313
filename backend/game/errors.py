"""
Errors raised by bet settlement and wallet operations.

Each carries the HTTP status the API layer answers with.
"""


class BetError(Exception):
    """Base class for errors that abort a request before any state change."""
    status_code = 500


class BetValidationError(BetError):
    """Malformed, missing or out-of-range input."""
    status_code = 400


class UserNotFoundError(BetError):
    status_code = 404

    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class WalletNotFoundError(BetError):
    status_code = 404

    def __init__(self, message: str = "Wallet not found for user"):
        super().__init__(message)


class InsufficientFundsError(BetError):
    status_code = 400

    def __init__(self, message: str = "Insufficient balance"):
        super().__init__(message)


class MissingCommitmentError(BetError):
    """No server seed hash was fetched for this (client_seed, nonce)."""
    status_code = 400


class BetAlreadySettledError(BetError):
    """This (client_seed, nonce) was already used for a settled bet."""
    status_code = 409


class ConfigurationError(BetError):
    """House wallet or encryption key missing or unusable."""
    status_code = 500


class TransferError(BetError):
    """The on-chain transfer failed or timed out."""
    status_code = 500


class FeatureDisabledError(BetError):
    status_code = 403
