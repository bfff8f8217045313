"""
Data models for the Coinflip Mini App.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, Tuple, List
from datetime import datetime
from enum import Enum
from provably_fair import generate_commitment, hash_server_seed


class CoinSide(Enum):
    """Side of the coin."""
    HEADS = "heads"
    TAILS = "tails"


class BetOutcome(Enum):
    """Result of a settled bet from the player's point of view."""
    WIN = "win"
    LOSS = "loss"


@dataclass
class User:
    """Telegram user with aggregate game statistics."""
    user_id: Optional[int]  # Auto-incrementing ID
    telegram_id: int

    # Profile (from Telegram WebApp initData)
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: str = "en"
    is_premium: bool = False

    # Stats (raw token units)
    total_wins: int = 0
    total_losses: int = 0
    total_wagered: int = 0
    net_profit: int = 0  # Signed

    # Metadata
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_visited: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class Commitment:
    """A server seed and the hash shown to the player before betting."""
    server_seed: str
    server_seed_hash: str

    @classmethod
    def create(cls) -> "Commitment":
        server_seed, server_seed_hash = generate_commitment()
        return cls(server_seed=server_seed, server_seed_hash=server_seed_hash)

    def to_dict(self) -> dict:
        return {"serverSeed": self.server_seed, "serverSeedHash": self.server_seed_hash}

    @classmethod
    def from_dict(cls, data: dict) -> "Commitment":
        return cls(server_seed=data.get("serverSeed") or "", server_seed_hash=data.get("serverSeedHash") or "")

    def is_valid(self) -> bool:
        """Both fields are set and the hash matches the seed."""
        if not self.server_seed.strip() or not self.server_seed_hash.strip():
            return False
        return hash_server_seed(self.server_seed) == self.server_seed_hash


class CommitmentStore:
    """Provably fair state of one wallet: client_seed -> nonce -> Commitment.

    Nonces are stored under their string form so the structure maps 1:1 onto
    the persisted JSON document. Leaves are immutable once created.
    """

    def __init__(self, state: Optional[Dict[str, Dict[str, Commitment]]] = None):
        self._state: Dict[str, Dict[str, Commitment]] = state or {}

    @staticmethod
    def _key(nonce: int) -> str:
        return str(nonce)

    def get(self, client_seed: str, nonce: int) -> Optional[Commitment]:
        return self._state.get(client_seed, {}).get(self._key(nonce))

    def get_valid(self, client_seed: str, nonce: int) -> Optional[Commitment]:
        """Like get(), but a blank or corrupted leaf counts as missing."""
        commitment = self.get(client_seed, nonce)
        if commitment is None or not commitment.is_valid():
            return None
        return commitment

    def set(self, client_seed: str, nonce: int, commitment: Commitment):
        """Insert a leaf.

        An invalid leaf may be replaced; a valid one is never overwritten.

        Raises:
            ValueError: If a different valid leaf already exists.
        """
        existing = self.get_valid(client_seed, nonce)
        if existing is not None and existing != commitment:
            raise ValueError(f"Commitment for ({client_seed}, {nonce}) already exists")
        self._state.setdefault(client_seed, {})[self._key(nonce)] = commitment

    def get_or_create(self, client_seed: str, nonce: int) -> Tuple[Commitment, bool]:
        """Return the leaf for (client_seed, nonce), creating it if missing or invalid.

        Returns:
            Tuple of (commitment, created)
        """
        existing = self.get_valid(client_seed, nonce)
        if existing is not None:
            return existing, False
        commitment = Commitment.create()
        self.set(client_seed, nonce, commitment)
        return commitment, True

    def merge(self, other: "CommitmentStore"):
        """Copy leaves from other that are missing or invalid here."""
        for client_seed, nonce, commitment in other.items():
            if self.get_valid(client_seed, int(nonce)) is None:
                self.set(client_seed, int(nonce), commitment)

    def items(self) -> List[Tuple[str, str, Commitment]]:
        return [
            (client_seed, nonce, commitment)
            for client_seed, nonces in self._state.items()
            for nonce, commitment in nonces.items()
        ]

    def __len__(self) -> int:
        return sum(len(nonces) for nonces in self._state.values())

    def to_dict(self) -> dict:
        return {
            client_seed: {nonce: c.to_dict() for nonce, c in nonces.items()}
            for client_seed, nonces in self._state.items()
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CommitmentStore":
        state: Dict[str, Dict[str, Commitment]] = {}
        for client_seed, nonces in (data or {}).items():
            state[client_seed] = {
                str(nonce): Commitment.from_dict(leaf or {})
                for nonce, leaf in (nonces or {}).items()
            }
        return cls(state)


@dataclass
class Wallet:
    """Custodial wallet, one per user."""
    wallet_id: Optional[int]
    user_id: int
    public_key: str
    encrypted_private_key: str

    token_balance: int = 0  # Raw units
    provably_fair_state: CommitmentStore = field(default_factory=CommitmentStore)

    # Optimistic concurrency token, bumped on every write
    version: int = 0

    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class GameHistory:
    """One settled bet. Append-only."""
    bet_id: str
    user_id: int
    game_type: str
    wager_amount: int  # Raw units
    choice: CoinSide
    outcome: BetOutcome
    payout_amount: int  # Net change to the balance, raw units, signed
    platform_fee: int
    server_seed: str
    server_seed_hash: str
    client_seed: str
    nonce: int
    resulting_hash: str
    precommitted: bool = True  # False when the seed was generated inside the bet call
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Transaction:
    """Wallet ledger entry for accounting."""
    tx_id: str
    user_id: int
    tx_type: str  # bet_win, bet_loss, mint
    amount: int  # Raw units, signed
    token_type: str = "token"
    bet_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Settlement:
    """Local state changes that follow a successful transfer.

    Applied atomically by Database.apply_settlement. Keyed by the bet id of its
    history entry so replays are no-ops.
    """
    history: GameHistory
    wallet_id: int
    balance_delta: int  # Raw units, signed
    commitments: CommitmentStore  # Leaves to ensure exist (current + next nonce)
    transaction: Transaction
