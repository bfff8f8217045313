import asyncio
import gc
import math
import sqlite3

import pytest

import provably_fair
from database import Commitment, CoinSide, BetOutcome, NegativeBalanceError
from game import (
    settle_bet,
    get_next_hash,
    calculate_payout,
    reconcile_pending_settlements,
    BetValidationError,
    UserNotFoundError,
    WalletNotFoundError,
    InsufficientFundsError,
    MissingCommitmentError,
    BetAlreadySettledError,
    ConfigurationError,
    TransferError,
)
from game import wallets as game_wallets
from game.wallets import wallet_lock
from security import audit_logger, AuditEventType
from utils import to_token_amount

CASINO = "casino"


@pytest.fixture
def settle(db, ledger, encryption_key):
    default_ledger = ledger

    def _settle(telegram_id, amount, choice, client_seed="abc", nonce=0, ledger=default_ledger, **kwargs):
        kwargs.setdefault("encryption_key", encryption_key)
        return asyncio.run(settle_bet(db, ledger, telegram_id, amount, choice, client_seed, nonce, **kwargs))

    return _settle


def _snapshot(db, user):
    wallet = db.get_wallet_by_user(user.user_id)
    stored = db.get_user(user.user_id)
    return (
        wallet.token_balance,
        stored.total_wins,
        stored.total_losses,
        stored.total_wagered,
        stored.net_profit,
        db.count_user_history(user.user_id),
    )


# === Payout math ===

def test_loss_costs_full_wager():
    assert calculate_payout(10_000_000_000, False, 5) == (-10_000_000_000, 0, 0)


def test_win_fee_is_floored():
    assert calculate_payout(3, True, 50) == (2, 2, 1)
    assert calculate_payout(10_000_000_000, True, 2.5) == (9_750_000_000, 9_750_000_000, 250_000_000)


@pytest.mark.parametrize("fee", [-1, 100.5])
def test_out_of_range_fee_is_configuration_error(fee):
    with pytest.raises(ConfigurationError):
        calculate_payout(100, True, fee)


# === Next hash ===

def test_next_hash_is_idempotent_and_persisted(db, make_player):
    user = make_player()

    first = asyncio.run(get_next_hash(db, user.telegram_id, "abc", 0))
    second = asyncio.run(get_next_hash(db, user.telegram_id, "abc", 0))

    assert first == second
    stored = db.get_wallet_by_user(user.user_id).provably_fair_state.get("abc", 0)
    assert stored.server_seed_hash == first
    assert first != stored.server_seed


def test_next_hash_validates_input(db, make_player):
    user = make_player()

    with pytest.raises(BetValidationError):
        asyncio.run(get_next_hash(db, user.telegram_id, "", 0))
    with pytest.raises(BetValidationError):
        asyncio.run(get_next_hash(db, user.telegram_id, "abc", -1))


def test_next_hash_unknown_user(db):
    with pytest.raises(UserNotFoundError):
        asyncio.run(get_next_hash(db, 424242, "abc", 0))


def test_next_hash_replaces_blank_commitment(db, make_player):
    user = make_player()
    _store_blank_leaf(db, user)

    served = asyncio.run(get_next_hash(db, user.telegram_id, "abc", 0))

    stored = db.get_wallet_by_user(user.user_id).provably_fair_state.get("abc", 0)
    assert stored.is_valid()
    assert served == stored.server_seed_hash


def test_wallet_locks_are_dropped_after_use(db, make_player, settle):
    user = make_player()

    lock = wallet_lock(user.user_id)
    assert wallet_lock(user.user_id) is lock
    del lock

    settle(user.telegram_id, 10, "heads")
    gc.collect()

    assert user.user_id not in game_wallets._wallet_locks


# === Settlement ===

def test_losing_bet_moves_wager_to_house(db, ledger, make_player, force_commitment, settle):
    user = make_player(balance=100)
    commitment = force_commitment(user.user_id, "abc", 0, CoinSide.TAILS)

    result = settle(user.telegram_id, 10, "heads")

    assert result.won is False
    assert result.coin_result == "tails"
    assert result.new_balance == 90
    assert result.payout_amount == 0
    assert result.precommitted is True
    assert result.server_seed == commitment.server_seed
    assert result.server_seed_hash == commitment.server_seed_hash
    assert ledger.transfers == [(f"secret-{user.telegram_id}", CASINO, 10.0)]

    wallet = db.get_wallet_by_user(user.user_id)
    assert wallet.token_balance == to_token_amount(90)
    assert wallet.provably_fair_state.get("abc", 1) is not None

    stored = db.get_user(user.user_id)
    assert (stored.total_wins, stored.total_losses) == (0, 1)
    assert stored.total_wagered == to_token_amount(10)
    assert stored.net_profit == -to_token_amount(10)

    history = db.get_history(result.bet_id)
    assert history.outcome == BetOutcome.LOSS
    assert history.payout_amount == -to_token_amount(10)
    assert history.resulting_hash == result.result_hash

    transactions = db.get_user_transactions(user.user_id)
    assert [(tx.tx_type, tx.amount, tx.bet_id) for tx in transactions] == [("bet_loss", -to_token_amount(10), result.bet_id)]


def test_winning_bet_pays_wager_minus_fee(db, ledger, make_player, force_commitment, settle):
    user = make_player(balance=100)
    force_commitment(user.user_id, "abc", 0, CoinSide.HEADS)

    result = settle(user.telegram_id, 10, "HEADS", fee_percent=2.5)

    assert result.won is True
    assert result.payout_amount == 9.75
    assert result.platform_fee == 0.25
    assert result.new_balance == 109.75
    assert ledger.transfers == [(CASINO, f"secret-{user.telegram_id}", 9.75)]

    wallet = db.get_wallet_by_user(user.user_id)
    assert wallet.token_balance == to_token_amount(100) + 9_750_000_000

    stored = db.get_user(user.user_id)
    assert (stored.total_wins, stored.total_losses) == (1, 0)
    assert stored.net_profit == 9_750_000_000
    assert db.get_history(result.bet_id).platform_fee == 250_000_000


def test_revealed_seed_verifies(db, make_player, settle):
    user = make_player()
    shown_hash = asyncio.run(get_next_hash(db, user.telegram_id, "abc", 0))

    result = settle(user.telegram_id, 1, "tails")

    assert result.server_seed_hash == shown_hash
    assert provably_fair.hash_server_seed(result.server_seed) == shown_hash
    assert provably_fair.resolve(result.server_seed, "abc", 0) == (result.coin_result, result.result_hash)


def test_zero_net_payout_skips_transfer(db, ledger, make_player, force_commitment, settle):
    user = make_player(balance=100)
    force_commitment(user.user_id, "abc", 0, CoinSide.HEADS)

    result = settle(user.telegram_id, 10, "heads", fee_percent=100)

    assert result.won is True
    assert result.payout_amount == 0
    assert result.new_balance == 100
    assert ledger.transfers == []
    history = db.get_history(result.bet_id)
    assert history.outcome == BetOutcome.WIN
    assert history.payout_amount == 0


@pytest.mark.parametrize("failure", ["raise", "false", "timeout"])
def test_transfer_failure_leaves_no_trace(db, ledger, make_player, settle, failure):
    user = make_player(balance=100)
    asyncio.run(get_next_hash(db, user.telegram_id, "abc", 0))
    before = _snapshot(db, user)

    if failure == "raise":
        ledger.fail = True
    elif failure == "false":
        ledger.return_false = True
    else:
        ledger.delay = 1.0

    with pytest.raises(TransferError):
        settle(user.telegram_id, 10, "heads", transfer_timeout=0.05)

    assert _snapshot(db, user) == before
    state = db.get_wallet_by_user(user.user_id).provably_fair_state
    assert state.get("abc", 0) is not None
    assert state.get("abc", 1) is None


def test_transfer_error_message_is_propagated(ledger, make_player, settle):
    user = make_player()
    ledger.fail = True

    with pytest.raises(TransferError, match="RPC node unavailable"):
        settle(user.telegram_id, 10, "heads")


def test_fallback_commitment_is_flagged(db, make_player, settle):
    user = make_player()

    result = settle(user.telegram_id, 10, "heads")

    assert result.precommitted is False
    assert db.get_history(result.bet_id).precommitted is False

    state = db.get_wallet_by_user(user.user_id).provably_fair_state
    assert state.get("abc", 0).server_seed == result.server_seed
    assert state.get("abc", 1) is not None

    events = audit_logger.get_bet_events(result.bet_id)
    fallback = [e for e in events if e["event_type"] == AuditEventType.FALLBACK_COMMITMENT.value]
    assert fallback[0]["severity"] == "warning"
    assert fallback[0]["details"] == {"client_seed": "abc", "nonce": 0}


def test_precommit_required_rejects_missing_commitment(db, ledger, make_player, settle):
    user = make_player()
    before = _snapshot(db, user)

    with pytest.raises(MissingCommitmentError):
        settle(user.telegram_id, 10, "heads", require_precommit=True)

    assert ledger.transfers == []
    assert _snapshot(db, user) == before


def _store_blank_leaf(db, user, client_seed="abc", nonce=0):
    wallet = db.get_wallet_by_user(user.user_id)
    wallet.provably_fair_state.set(client_seed, nonce, Commitment("", ""))
    db.save_wallet(wallet)


def test_blank_stored_commitment_is_replaced_by_fallback(db, ledger, make_player, settle):
    user = make_player()
    _store_blank_leaf(db, user)

    result = settle(user.telegram_id, 10, "heads")

    assert result.precommitted is False
    assert result.server_seed != ""
    assert provably_fair.hash_server_seed(result.server_seed) == result.server_seed_hash
    assert len(ledger.transfers) == 1

    state = db.get_wallet_by_user(user.user_id).provably_fair_state
    assert state.get("abc", 0).server_seed == result.server_seed

    events = audit_logger.get_bet_events(result.bet_id)
    assert AuditEventType.FALLBACK_COMMITMENT.value in {e["event_type"] for e in events}


def test_blank_stored_commitment_rejected_when_precommit_required(db, ledger, make_player, settle):
    user = make_player()
    _store_blank_leaf(db, user)
    before = _snapshot(db, user)

    with pytest.raises(MissingCommitmentError):
        settle(user.telegram_id, 10, "heads", require_precommit=True)

    assert ledger.transfers == []
    assert _snapshot(db, user) == before


def test_settled_nonce_cannot_be_replayed(db, ledger, make_player, settle):
    user = make_player()
    settle(user.telegram_id, 10, "heads")
    after_first = _snapshot(db, user)

    with pytest.raises(BetAlreadySettledError):
        settle(user.telegram_id, 10, "heads")

    assert len(ledger.transfers) == 1
    assert _snapshot(db, user) == after_first


def test_consecutive_nonces_use_prestaged_commitments(db, make_player, settle):
    user = make_player()

    settle(user.telegram_id, 1, "heads", nonce=0)
    staged = db.get_wallet_by_user(user.user_id).provably_fair_state.get("abc", 1)
    second = settle(user.telegram_id, 1, "heads", nonce=1)

    assert second.precommitted is True
    assert second.server_seed == staged.server_seed


def test_insufficient_funds(db, ledger, make_player, settle):
    user = make_player(balance=5)

    with pytest.raises(InsufficientFundsError):
        settle(user.telegram_id, 10, "heads")

    assert ledger.transfers == []


def test_unknown_user_and_missing_wallet(make_player, settle):
    with pytest.raises(UserNotFoundError):
        settle(999999, 10, "heads")

    user = make_player(with_wallet=False)
    with pytest.raises(WalletNotFoundError):
        settle(user.telegram_id, 10, "heads")


def test_missing_ledger_is_configuration_error(db, make_player, settle):
    user = make_player()
    before = _snapshot(db, user)

    with pytest.raises(ConfigurationError, match="Admin wallet not configured"):
        settle(user.telegram_id, 10, "heads", ledger=None)

    assert _snapshot(db, user) == before


def test_missing_encryption_key_is_configuration_error(make_player, settle):
    user = make_player()

    with pytest.raises(ConfigurationError):
        settle(user.telegram_id, 10, "heads", encryption_key=None)


@pytest.mark.parametrize("amount, choice, client_seed, nonce", [
    (0, "heads", "abc", 0),
    (-5, "heads", "abc", 0),
    ("10", "heads", "abc", 0),
    (True, "heads", "abc", 0),
    (math.nan, "heads", "abc", 0),
    (1e-12, "heads", "abc", 0),
    (10, "edge", "abc", 0),
    (10, None, "abc", 0),
    (10, "heads", "", 0),
    (10, "heads", "abc", -1),
    (10, "heads", "abc", 1.5),
])
def test_invalid_input_is_rejected(db, ledger, make_player, settle, amount, choice, client_seed, nonce):
    user = make_player()
    before = _snapshot(db, user)

    with pytest.raises(BetValidationError):
        settle(user.telegram_id, amount, choice, client_seed=client_seed, nonce=nonce)

    assert ledger.transfers == []
    assert _snapshot(db, user) == before


def test_concurrent_bets_cannot_double_spend(db, ledger, encryption_key, make_player, force_commitment):
    user = make_player(balance=10)
    force_commitment(user.user_id, "abc", 0, CoinSide.TAILS)
    force_commitment(user.user_id, "abc", 1, CoinSide.TAILS)
    ledger.delay = 0.01

    async def both():
        return await asyncio.gather(
            settle_bet(db, ledger, user.telegram_id, 10, "heads", "abc", 0, encryption_key=encryption_key),
            settle_bet(db, ledger, user.telegram_id, 10, "heads", "abc", 1, encryption_key=encryption_key),
            return_exceptions=True,
        )

    results = asyncio.run(both())

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientFundsError)
    assert len(ledger.transfers) == 1
    assert db.get_wallet_by_user(user.user_id).token_balance == 0


# === Persistence failure and reconciliation ===

def test_persist_failure_is_journaled_and_reconciled(db, ledger, make_player, force_commitment, settle, monkeypatch):
    user = make_player(balance=100)
    force_commitment(user.user_id, "abc", 0, CoinSide.TAILS)

    def broken_apply(settlement):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "apply_settlement", broken_apply)

    result = settle(user.telegram_id, 10, "heads")

    # Transfer happened and the client still gets the result
    assert result.won is False
    assert result.new_balance == 90
    assert len(ledger.transfers) == 1
    assert db.count_user_history(user.user_id) == 0
    assert db.get_wallet_by_user(user.user_id).token_balance == to_token_amount(100)

    pending = db.get_pending_settlements()
    assert [s.history.bet_id for s in pending] == [result.bet_id]

    monkeypatch.undo()

    assert reconcile_pending_settlements(db) == 1
    assert db.get_pending_settlements() == []
    assert db.get_history(result.bet_id).outcome == BetOutcome.LOSS
    assert db.get_wallet_by_user(user.user_id).token_balance == to_token_amount(90)
    assert db.get_user(user.user_id).total_losses == 1

    # Second run is a no-op
    assert reconcile_pending_settlements(db) == 0


def test_journaled_bet_blocks_replay_and_reserves_funds(db, ledger, make_player, force_commitment, settle, monkeypatch):
    user = make_player(balance=15)
    force_commitment(user.user_id, "abc", 0, CoinSide.TAILS)

    def broken_apply(settlement):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "apply_settlement", broken_apply)
    lost = settle(user.telegram_id, 10, "heads")
    assert lost.won is False

    # Seed for nonce 0 is already revealed; betting on it again must fail
    with pytest.raises(BetAlreadySettledError):
        settle(user.telegram_id, 1, "tails")

    # The journaled loss is not in the stored balance but still counts
    with pytest.raises(InsufficientFundsError):
        settle(user.telegram_id, 10, "heads", nonce=1)

    assert len(ledger.transfers) == 1

    monkeypatch.undo()

    assert reconcile_pending_settlements(db) == 1
    assert db.get_pending_settlements() == []
    assert db.get_wallet_by_user(user.user_id).token_balance == to_token_amount(5)


def test_reconcile_never_drives_balance_negative(db, make_player, force_commitment, settle, monkeypatch):
    user = make_player(balance=100)
    force_commitment(user.user_id, "abc", 0, CoinSide.TAILS)

    def broken_apply(settlement):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "apply_settlement", broken_apply)
    settle(user.telegram_id, 10, "heads")
    monkeypatch.undo()

    # Balance drained by a writer outside this process
    wallet = db.get_wallet_by_user(user.user_id)
    wallet.token_balance = to_token_amount(5)
    db.save_wallet(wallet)

    pending = db.get_pending_settlements()
    with pytest.raises(NegativeBalanceError):
        db.apply_settlement(pending[0])

    assert reconcile_pending_settlements(db) == 0
    assert len(db.get_pending_settlements()) == 1
    assert db.get_wallet_by_user(user.user_id).token_balance == to_token_amount(5)
    assert db.count_user_history(user.user_id) == 0


def test_apply_settlement_is_idempotent(db, make_player, force_commitment, settle, monkeypatch):
    user = make_player(balance=100)
    force_commitment(user.user_id, "abc", 0, CoinSide.TAILS)
    captured = []

    original = db.apply_settlement

    def capture(settlement):
        captured.append(settlement)
        return original(settlement)

    monkeypatch.setattr(db, "apply_settlement", capture)
    settle(user.telegram_id, 10, "heads")

    assert original(captured[0]) is False
    assert db.get_wallet_by_user(user.user_id).token_balance == to_token_amount(90)
    assert db.count_user_history(user.user_id) == 1
