"""
Shared fixtures: a fresh SQLite database per test and a fake token ledger.
"""
import asyncio
import os
import tempfile

# Must be set before config is imported anywhere
os.environ["DB_PATH"] = os.path.join(tempfile.gettempdir(), f"coinflip_test_{os.getpid()}.db")
os.environ["AUDIT_DB_PATH"] = os.path.join(tempfile.gettempdir(), f"coinflip_audit_{os.getpid()}.db")
os.environ.pop("ADMIN_WALLET_PRIVATE_KEY", None)

import pytest

from database import Database, User, Wallet, Commitment, CoinSide
from game import flip_coin
from game import wallets as game_wallets
from utils import generate_encryption_key, encrypt_private_key, to_token_amount


class FakeLedger:
    """Records transfers instead of touching the chain."""

    def __init__(self):
        self.transfers = []
        self.mints = []
        self.fail = False
        self.return_false = False
        self.delay = 0.0

    async def transfer(self, from_identifier: str, to_identifier: str, amount: float) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise Exception("RPC node unavailable")
        if self.return_false:
            return False
        self.transfers.append((from_identifier, to_identifier, amount))
        return True

    async def mint_to(self, owner_secret: str, amount: float) -> bool:
        if self.fail:
            raise Exception("RPC node unavailable")
        self.mints.append((owner_secret, amount))
        return True


@pytest.fixture(autouse=True)
def reset_wallet_locks():
    game_wallets._wallet_locks.clear()
    yield
    game_wallets._wallet_locks.clear()


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "coinflip.db"))


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def encryption_key():
    return generate_encryption_key()


@pytest.fixture
def make_player(db, encryption_key):
    """Create a registered user, by default with a funded wallet."""

    def _make(telegram_id: int = 1001, balance: float = 100.0, with_wallet: bool = True, **stats) -> User:
        user = User(
            user_id=None,
            telegram_id=telegram_id,
            first_name=f"Player{telegram_id}",
            username=f"player{telegram_id}",
            **stats,
        )
        user.user_id = db.save_user(user)

        if with_wallet:
            db.save_wallet(Wallet(
                wallet_id=None,
                user_id=user.user_id,
                public_key=f"Pubkey{telegram_id}",
                encrypted_private_key=encrypt_private_key(f"secret-{telegram_id}", encryption_key),
                token_balance=to_token_amount(balance),
            ))
        return user

    return _make


@pytest.fixture
def force_commitment(db):
    """Store a commitment for (client_seed, nonce) that resolves to the given side."""

    def _force(user_id: int, client_seed: str, nonce: int, side: CoinSide) -> Commitment:
        wallet = db.get_wallet_by_user(user_id)
        while True:
            commitment = Commitment.create()
            if flip_coin(commitment.server_seed, client_seed, nonce).side == side:
                break
        wallet.provably_fair_state.set(client_seed, nonce, commitment)
        db.save_wallet(wallet)
        return commitment

    return _force
