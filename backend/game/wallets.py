"""
Custodial wallet management.

Every mutation of a wallet's balance or provably fair state runs under that
wallet's lock, so a balance check and the write that follows it cannot
interleave with another request for the same user.
"""
import asyncio
import logging
import uuid
import weakref
from typing import Optional, Tuple

from database import Database, User, Wallet, Transaction
from utils import encrypt_private_key, decrypt_private_key, to_token_amount
from utils.validation import is_valid_mint_amount
from security import audit_logger, AuditEventType, AuditSeverity
from .errors import (
    UserNotFoundError,
    WalletNotFoundError,
    ConfigurationError,
    BetValidationError,
    TransferError,
)
from .token_ops import generate_wallet, TokenLedger

logger = logging.getLogger(__name__)

# Entries disappear once no coroutine holds or waits on the lock
_wallet_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def wallet_lock(user_id: int) -> asyncio.Lock:
    """Per-user lock serializing wallet mutations in this process."""
    lock = _wallet_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _wallet_locks[user_id] = lock
    return lock


def get_user(db: Database, telegram_id: int) -> User:
    user = db.get_user_by_telegram_id(telegram_id)
    if not user:
        raise UserNotFoundError()
    return user


def get_user_and_wallet(db: Database, telegram_id: int) -> Tuple[User, Wallet]:
    """Load a user and their wallet.

    Raises:
        UserNotFoundError, WalletNotFoundError
    """
    user = get_user(db, telegram_id)
    wallet = db.get_wallet_by_user(user.user_id)
    if not wallet:
        raise WalletNotFoundError()
    return user, wallet


def get_wallet_secret(wallet: Wallet, encryption_key: str) -> str:
    """Decrypt a wallet's private key."""
    if not encryption_key:
        raise ConfigurationError("Wallet encryption key not configured")
    try:
        return decrypt_private_key(wallet.encrypted_private_key, encryption_key)
    except ValueError as e:
        logger.error(f"[WALLET] Cannot decrypt wallet {wallet.wallet_id}: {e}")
        raise ConfigurationError("Wallet key could not be decrypted") from e


async def create_user_wallet(db: Database, telegram_id: int, encryption_key: str) -> Wallet:
    """Create the user's custodial wallet, or return the existing one."""
    if not encryption_key:
        raise ConfigurationError("Wallet encryption key not configured")

    user = get_user(db, telegram_id)

    async with wallet_lock(user.user_id):
        existing = db.get_wallet_by_user(user.user_id)
        if existing:
            return existing

        public_key, secret = generate_wallet()
        wallet = Wallet(
            wallet_id=None,
            user_id=user.user_id,
            public_key=public_key,
            encrypted_private_key=encrypt_private_key(secret, encryption_key),
        )
        db.save_wallet(wallet)

    audit_logger.log(
        event_type=AuditEventType.WALLET_CREATED,
        user_id=user.user_id,
        details={"public_key": public_key},
    )
    logger.info(f"[WALLET] Created wallet {public_key} for telegram user {telegram_id}")
    return wallet


async def mint_test_tokens(
    db: Database,
    ledger: Optional[TokenLedger],
    telegram_id: int,
    amount: float,
    encryption_key: str,
    max_amount: float,
) -> int:
    """Mint game tokens to a user's wallet and credit the balance.

    Returns:
        New raw balance
    """
    is_valid, error = is_valid_mint_amount(amount, max_amount)
    if not is_valid:
        raise BetValidationError(error)

    if ledger is None:
        raise ConfigurationError("Admin wallet not configured")

    user, _ = get_user_and_wallet(db, telegram_id)

    async with wallet_lock(user.user_id):
        wallet = db.get_wallet_by_user(user.user_id)
        secret = get_wallet_secret(wallet, encryption_key)
        try:
            await ledger.mint_to(secret, amount)
        except Exception as e:
            logger.error(f"[MINT] Mint to {wallet.public_key} failed: {e}", exc_info=True)
            raise TransferError(f"Token mint failed: {e}") from e

        raw_amount = to_token_amount(amount)
        balance = db.credit_wallet(
            wallet.wallet_id,
            raw_amount,
            Transaction(
                tx_id=f"tx_{uuid.uuid4().hex[:12]}",
                user_id=user.user_id,
                tx_type="mint",
                amount=raw_amount,
            ),
        )

    audit_logger.log(
        event_type=AuditEventType.TOKENS_MINTED,
        severity=AuditSeverity.WARNING,
        user_id=user.user_id,
        details={"amount": amount},
    )
    return balance
