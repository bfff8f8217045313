"""
Core coinflip game logic with provably fair commit-reveal randomness.

Bet lifecycle:
1. Client fetches the server seed hash for (client_seed, nonce) via get_next_hash.
2. Client bets with the same (client_seed, nonce).
3. settle_bet resolves the flip from the committed server seed, moves tokens
   on-chain, then writes history, stats, balance and the next nonce's
   commitment in a single transaction.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Optional, Tuple

import provably_fair
from config import HOUSE_IDENTIFIER
from database import (
    Database,
    Commitment,
    CommitmentStore,
    GameHistory,
    Transaction,
    Settlement,
    CoinSide,
    BetOutcome,
)
from security import audit_logger, AuditEventType, AuditSeverity
from utils import to_token_amount, from_token_amount
from utils.validation import validate_bet, is_valid_client_seed, is_valid_nonce
from .errors import (
    BetValidationError,
    InsufficientFundsError,
    MissingCommitmentError,
    BetAlreadySettledError,
    ConfigurationError,
    TransferError,
)
from .token_ops import TokenLedger
from .wallets import wallet_lock, get_user_and_wallet, get_wallet_secret

logger = logging.getLogger(__name__)

GAME_TYPE = "coinflip"
DEFAULT_TRANSFER_TIMEOUT = 60.0


@dataclass(frozen=True)
class FlipResult:
    side: CoinSide
    result_hash: str


@dataclass
class BetResult:
    """Outcome of a settled bet, including the revealed fairness data."""
    bet_id: str
    won: bool
    new_balance: float
    coin_result: str
    bet_amount: float
    payout_amount: float
    platform_fee: float
    server_seed: str
    server_seed_hash: str
    client_seed: str
    nonce: int
    result_hash: str
    precommitted: bool


def generate_bet_id() -> str:
    """Generate unique bet ID."""
    return f"bet_{uuid.uuid4().hex[:12]}"


def flip_coin(server_seed: str, client_seed: str, nonce: int) -> FlipResult:
    """Provably fair coin flip.

    HMAC-SHA256(server_seed, f"{client_seed}-{nonce}"); first hex digit
    0-7 = HEADS, 8-f = TAILS.
    """
    side, digest = provably_fair.resolve(server_seed, client_seed, nonce)
    return FlipResult(side=CoinSide(side), result_hash=digest)


def verify_bet(
    server_seed: str,
    server_seed_hash: str,
    client_seed: str,
    nonce: int,
    coin_result: Optional[str] = None,
    result_hash: Optional[str] = None,
) -> dict:
    """Recompute a bet's commitment and outcome from its revealed seed.

    Allows anyone to verify the game was fair.
    """
    expected = flip_coin(server_seed, client_seed, nonce)
    hash_matches = provably_fair.hash_server_seed(server_seed) == server_seed_hash
    result_matches = (
        (coin_result is None or coin_result.lower() == expected.side.value)
        and (result_hash is None or result_hash == expected.result_hash)
    )
    return {
        "hash_matches": hash_matches,
        "result_matches": result_matches,
        "is_fair": hash_matches and result_matches,
        "expected_result": expected.side.value,
        "expected_hash": expected.result_hash,
    }


def calculate_payout(wager_raw: int, won: bool, fee_percent: float) -> Tuple[int, int, int]:
    """Work out the balance change for a bet (raw units).

    Even-money payout; the platform fee applies to winning wagers only.

    Returns:
        Tuple of (net_change, payout, fee). net_change is positive on a win,
        -wager_raw on a loss.
    """
    if not 0 <= fee_percent <= 100:
        raise ConfigurationError(f"Invalid platform fee percent: {fee_percent}")

    if not won:
        return -wager_raw, 0, 0

    fee_raw = int((Decimal(wager_raw) * Decimal(str(fee_percent)) / 100).to_integral_value(rounding=ROUND_FLOOR))
    payout_raw = wager_raw - fee_raw
    return payout_raw, payout_raw, fee_raw


async def _transfer(ledger: TokenLedger, from_id: str, to_id: str, amount: float, timeout: float):
    """Run the ledger transfer, turning every failure into TransferError."""
    try:
        ok = await asyncio.wait_for(ledger.transfer(from_id, to_id, amount), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TransferError(f"Token transfer timed out after {timeout:g}s") from e
    except Exception as e:
        raise TransferError(f"Token transfer failed: {e}") from e
    if not ok:
        raise TransferError("Token transfer failed")


async def get_next_hash(db: Database, telegram_id: int, client_seed: str, nonce: int) -> str:
    """Return the server seed hash for (client_seed, nonce), creating it if needed.

    Never reveals the server seed. Safe to call repeatedly.
    """
    for is_valid, error in (is_valid_client_seed(client_seed), is_valid_nonce(nonce)):
        if not is_valid:
            raise BetValidationError(error)

    user, _ = get_user_and_wallet(db, telegram_id)

    async with wallet_lock(user.user_id):
        wallet = db.get_wallet_by_user(user.user_id)
        commitment, created = wallet.provably_fair_state.get_or_create(client_seed, nonce)
        if created:
            db.save_wallet(wallet)
            logger.info(f"[PF] New commitment for user {user.user_id} seed={client_seed} nonce={nonce}")

    return commitment.server_seed_hash


async def settle_bet(
    db: Database,
    ledger: Optional[TokenLedger],
    telegram_id: int,
    bet_amount: float,
    choice: str,
    client_seed: str,
    nonce: int,
    fee_percent: float = 0.0,
    encryption_key: Optional[str] = None,
    require_precommit: bool = False,
    transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT,
) -> BetResult:
    """Settle a coinflip bet against the house.

    Args:
        db: Database instance
        ledger: On-chain token ledger (None if the house wallet is not configured)
        telegram_id: Player's Telegram ID
        bet_amount: Wager in user-facing token units
        choice: "heads" or "tails" (case-insensitive)
        client_seed: Player's client seed
        nonce: Bet nonce for this client seed
        fee_percent: Platform fee on winning wagers, in percent
        encryption_key: Fernet key for custodial wallet secrets
        require_precommit: Reject bets whose hash was never fetched
        transfer_timeout: Seconds to wait for the transfer

    Returns:
        BetResult with the revealed server seed

    Raises:
        BetError subclasses. Nothing is persisted when one is raised.
    """
    is_valid, error = validate_bet(bet_amount, choice, client_seed, nonce)
    if not is_valid:
        raise BetValidationError(error)
    choice = choice.strip().lower()

    user, _ = get_user_and_wallet(db, telegram_id)

    async with wallet_lock(user.user_id):
        wallet = db.get_wallet_by_user(user.user_id)

        # Journaled settlements are not in the stored balance yet
        pending_deltas = db.get_pending_balance_deltas(user.user_id)
        available_raw = wallet.token_balance + sum(d for d in pending_deltas if d < 0)

        wager_raw = to_token_amount(bet_amount)
        if available_raw < wager_raw:
            raise InsufficientFundsError()

        if db.is_nonce_settled(user.user_id, client_seed, nonce):
            audit_logger.log(
                event_type=AuditEventType.REPLAY_REJECTED,
                severity=AuditSeverity.WARNING,
                user_id=user.user_id,
                details={"client_seed": client_seed, "nonce": nonce},
            )
            raise BetAlreadySettledError(f"Nonce {nonce} was already used with this client seed")

        if ledger is None:
            raise ConfigurationError("Admin wallet not configured")
        user_secret = get_wallet_secret(wallet, encryption_key)

        # Leaves to persist with the settlement
        staged = CommitmentStore()

        commitment = wallet.provably_fair_state.get_valid(client_seed, nonce)
        precommitted = commitment is not None
        if not precommitted:
            if wallet.provably_fair_state.get(client_seed, nonce) is not None:
                logger.warning(f"[PF] Stored commitment for user {user.user_id} seed={client_seed} nonce={nonce} is invalid, ignoring it")
            if require_precommit:
                raise MissingCommitmentError(
                    f"No server seed hash was issued for nonce {nonce}; fetch the next hash first"
                )
            logger.warning(f"[PF] Commitment missing for user {user.user_id} seed={client_seed} nonce={nonce}. Generating fallback.")
            commitment = Commitment.create()
            staged.set(client_seed, nonce, commitment)

        flip = flip_coin(commitment.server_seed, client_seed, nonce)
        won = flip.side.value == choice

        net_change_raw, payout_raw, fee_raw = calculate_payout(wager_raw, won, fee_percent)

        try:
            if won:
                if payout_raw > 0:
                    await _transfer(ledger, HOUSE_IDENTIFIER, user_secret, from_token_amount(payout_raw), transfer_timeout)
                else:
                    logger.info(f"[BET] Net payout is {payout_raw} after fee, no transfer executed")
            else:
                await _transfer(ledger, user_secret, HOUSE_IDENTIFIER, from_token_amount(wager_raw), transfer_timeout)
        except TransferError as e:
            logger.error(f"[BET] Transfer failed for user {user.user_id}: {e}")
            audit_logger.log(
                event_type=AuditEventType.TRANSFER_FAILED,
                severity=AuditSeverity.WARNING,
                user_id=user.user_id,
                details=str(e),
            )
            raise

        # Pre-stage the commitment for the next bet
        if wallet.provably_fair_state.get_valid(client_seed, nonce + 1) is None:
            staged.get_or_create(client_seed, nonce + 1)

        bet_id = generate_bet_id()
        now = datetime.utcnow()
        outcome = BetOutcome.WIN if won else BetOutcome.LOSS
        settlement = Settlement(
            history=GameHistory(
                bet_id=bet_id,
                user_id=user.user_id,
                game_type=GAME_TYPE,
                wager_amount=wager_raw,
                choice=CoinSide(choice),
                outcome=outcome,
                payout_amount=net_change_raw,
                platform_fee=fee_raw,
                server_seed=commitment.server_seed,
                server_seed_hash=commitment.server_seed_hash,
                client_seed=client_seed,
                nonce=nonce,
                resulting_hash=flip.result_hash,
                precommitted=precommitted,
                timestamp=now,
            ),
            wallet_id=wallet.wallet_id,
            balance_delta=net_change_raw,
            commitments=staged,
            transaction=Transaction(
                tx_id=f"tx_{uuid.uuid4().hex[:12]}",
                user_id=user.user_id,
                tx_type="bet_win" if won else "bet_loss",
                amount=net_change_raw,
                bet_id=bet_id,
                timestamp=now,
            ),
        )

        # Money has moved: from here on failures are journaled, not raised
        try:
            db.apply_settlement(settlement)
        except Exception as e:
            logger.error(f"[BET] Failed to persist settlement {bet_id}: {e}", exc_info=True)
            audit_logger.log(
                event_type=AuditEventType.SETTLEMENT_PERSIST_FAILED,
                severity=AuditSeverity.CRITICAL,
                user_id=user.user_id,
                bet_id=bet_id,
                details=str(e),
            )
            try:
                db.save_pending_settlement(settlement, str(e))
            except Exception as journal_error:
                logger.critical(
                    f"[BET] Could not journal settlement {bet_id} (delta={net_change_raw}): {journal_error}",
                    exc_info=True,
                )

    new_balance_raw = wallet.token_balance + sum(pending_deltas) + net_change_raw

    if not precommitted:
        audit_logger.log(
            event_type=AuditEventType.FALLBACK_COMMITMENT,
            severity=AuditSeverity.WARNING,
            user_id=user.user_id,
            bet_id=bet_id,
            details={"client_seed": client_seed, "nonce": nonce},
        )
    audit_logger.log(
        event_type=AuditEventType.BET_SETTLED,
        user_id=user.user_id,
        bet_id=bet_id,
        details={"outcome": outcome.value, "wager": wager_raw, "net": net_change_raw, "fee": fee_raw},
    )
    logger.info(f"[BET] User {user.user_id} {outcome.value}: {flip.side.value} (chose {choice}), wager {bet_amount}, net {from_token_amount(net_change_raw)}")

    return BetResult(
        bet_id=bet_id,
        won=won,
        new_balance=from_token_amount(new_balance_raw),
        coin_result=flip.side.value,
        bet_amount=bet_amount,
        payout_amount=from_token_amount(payout_raw),
        platform_fee=from_token_amount(fee_raw),
        server_seed=commitment.server_seed,
        server_seed_hash=commitment.server_seed_hash,
        client_seed=client_seed,
        nonce=nonce,
        result_hash=flip.result_hash,
        precommitted=precommitted,
    )


def reconcile_pending_settlements(db: Database) -> int:
    """Re-apply settlements whose local write failed after the transfer.

    Safe to run repeatedly: already-applied bet ids are skipped.

    Returns:
        Number of settlements applied by this run
    """
    applied = 0
    for settlement in db.get_pending_settlements():
        bet_id = settlement.history.bet_id
        try:
            if db.apply_settlement(settlement):
                applied += 1
        except Exception as e:
            logger.error(f"[RECONCILE] Settlement {bet_id} still failing: {e}", exc_info=True)
            continue

        db.resolve_pending_settlement(bet_id)
        audit_logger.log(
            event_type=AuditEventType.SETTLEMENT_RECONCILED,
            user_id=settlement.history.user_id,
            bet_id=bet_id,
        )

    if applied:
        logger.info(f"[RECONCILE] Applied {applied} pending settlement(s)")
    return applied
