"""
Database repository for the Coinflip Mini App.
Supports SQLite; the wallet's provably fair state is stored as a JSON document.
"""
import json
import sqlite3
import logging
from typing import Optional, List
from datetime import datetime
from .models import (
    User,
    Wallet,
    GameHistory,
    Transaction,
    Settlement,
    CommitmentStore,
    CoinSide,
    BetOutcome,
)

logger = logging.getLogger(__name__)


class ConcurrentModificationError(Exception):
    """Wallet was written by someone else since it was loaded."""


class NegativeBalanceError(Exception):
    """Applying a balance change would take a wallet below zero."""


LEADERBOARD_SORTS = {
    "wins": "total_wins DESC, net_profit DESC",
    "wagered": "total_wagered DESC, net_profit DESC",
    "netProfit": "net_profit DESC, total_wins DESC",
}


class Database:
    """Database repository."""

    def __init__(self, db_path: str = "coinflip.db"):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                user_id INTEGER PRIMARY KEY AUTOINCREMENT,
                telegram_id INTEGER NOT NULL UNIQUE,
                first_name TEXT NOT NULL DEFAULT '',
                last_name TEXT,
                username TEXT,
                language_code TEXT DEFAULT 'en',
                is_premium INTEGER DEFAULT 0,
                total_wins INTEGER DEFAULT 0,
                total_losses INTEGER DEFAULT 0,
                total_wagered INTEGER DEFAULT 0,
                net_profit INTEGER DEFAULT 0,
                created_at TEXT,
                last_visited TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS wallets (
                wallet_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL UNIQUE,
                public_key TEXT NOT NULL,
                encrypted_private_key TEXT NOT NULL,
                token_balance INTEGER DEFAULT 0,
                provably_fair_state TEXT NOT NULL DEFAULT '{}',
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT,
                updated_at TEXT,
                FOREIGN KEY (user_id) REFERENCES users(user_id)
            )
        """)

        # One row per settled bet. (user_id, client_seed, nonce) can only be settled once.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS game_history (
                bet_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                game_type TEXT NOT NULL,
                wager_amount INTEGER NOT NULL,
                choice TEXT NOT NULL,
                outcome TEXT NOT NULL,
                payout_amount INTEGER NOT NULL,
                platform_fee INTEGER NOT NULL DEFAULT 0,
                server_seed TEXT NOT NULL,
                server_seed_hash TEXT NOT NULL,
                client_seed TEXT NOT NULL,
                nonce INTEGER NOT NULL,
                resulting_hash TEXT NOT NULL,
                precommitted INTEGER NOT NULL DEFAULT 1,
                timestamp TEXT NOT NULL,
                UNIQUE (user_id, client_seed, nonce),
                FOREIGN KEY (user_id) REFERENCES users(user_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                tx_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                tx_type TEXT NOT NULL,
                amount INTEGER NOT NULL,
                token_type TEXT NOT NULL DEFAULT 'token',
                bet_id TEXT,
                timestamp TEXT,
                FOREIGN KEY (user_id) REFERENCES users(user_id)
            )
        """)

        # Settlements whose transfer went through but whose local write failed
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS pending_settlements (
                bet_id TEXT PRIMARY KEY,
                user_id INTEGER,
                client_seed TEXT,
                nonce INTEGER,
                balance_delta INTEGER,
                payload TEXT NOT NULL,
                error TEXT,
                created_at TEXT NOT NULL,
                resolved_at TEXT
            )
        """)

        # === MIGRATIONS: Safely add missing columns to existing tables ===
        cursor.execute("PRAGMA table_info(game_history)")
        existing_columns = {row[1] for row in cursor.fetchall()}

        history_migrations = [
            ("platform_fee", "INTEGER NOT NULL DEFAULT 0"),
            ("precommitted", "INTEGER NOT NULL DEFAULT 1"),
        ]

        for col_name, col_type in history_migrations:
            if col_name not in existing_columns:
                try:
                    cursor.execute(f"ALTER TABLE game_history ADD COLUMN {col_name} {col_type}")
                    logger.info(f"Migration: Added column '{col_name}' to game_history table")
                except sqlite3.OperationalError as e:
                    if "duplicate column" not in str(e).lower():
                        logger.warning(f"Migration warning for {col_name}: {e}")

        cursor.execute("PRAGMA table_info(pending_settlements)")
        pending_columns = {row[1] for row in cursor.fetchall()}

        pending_migrations = [
            ("user_id", "INTEGER"),
            ("client_seed", "TEXT"),
            ("nonce", "INTEGER"),
            ("balance_delta", "INTEGER"),
        ]

        for col_name, col_type in pending_migrations:
            if col_name not in pending_columns:
                cursor.execute(f"ALTER TABLE pending_settlements ADD COLUMN {col_name} {col_type}")
                logger.info(f"Migration: Added column '{col_name}' to pending_settlements table")

        # Backfill journal rows written before the columns existed
        cursor.execute("SELECT bet_id, payload FROM pending_settlements WHERE user_id IS NULL")
        for bet_id, payload in cursor.fetchall():
            data = json.loads(payload)
            cursor.execute(
                "UPDATE pending_settlements SET user_id = ?, client_seed = ?, nonce = ?, balance_delta = ? WHERE bet_id = ?",
                (
                    data["history"]["user_id"], data["history"]["client_seed"],
                    data["history"]["nonce"], data["balance_delta"], bet_id,
                ),
            )

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_history_user_time ON game_history(user_id, timestamp)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_net_profit ON users(net_profit)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_wins ON users(total_wins)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_pending_unresolved ON pending_settlements(resolved_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_pending_bet_key ON pending_settlements(user_id, client_seed, nonce)")

        conn.commit()
        conn.close()
        logger.info(f"Database initialized at {self.db_path}")

    # === User Operations ===

    def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        conn = self._connect()
        row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        conn.close()
        return self._row_to_user(row) if row else None

    def get_user_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Get user by Telegram ID."""
        conn = self._connect()
        row = conn.execute("SELECT * FROM users WHERE telegram_id = ?", (telegram_id,)).fetchone()
        conn.close()
        return self._row_to_user(row) if row else None

    def _row_to_user(self, row: sqlite3.Row) -> User:
        """Convert database row to User object."""
        return User(
            user_id=row["user_id"],
            telegram_id=row["telegram_id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            username=row["username"],
            language_code=row["language_code"],
            is_premium=bool(row["is_premium"]),
            total_wins=row["total_wins"],
            total_losses=row["total_losses"],
            total_wagered=row["total_wagered"],
            net_profit=row["net_profit"],
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else datetime.utcnow(),
            last_visited=datetime.fromisoformat(row["last_visited"]) if row["last_visited"] else datetime.utcnow(),
        )

    def save_user(self, user: User) -> int:
        """Save or update user. Returns user_id."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        if user.user_id:
            cursor.execute("""
                UPDATE users SET
                    telegram_id=?, first_name=?, last_name=?, username=?, language_code=?, is_premium=?,
                    total_wins=?, total_losses=?, total_wagered=?, net_profit=?,
                    created_at=?, last_visited=?
                WHERE user_id=?
            """, (
                user.telegram_id, user.first_name, user.last_name, user.username, user.language_code,
                int(user.is_premium),
                user.total_wins, user.total_losses, user.total_wagered, user.net_profit,
                user.created_at.isoformat(), user.last_visited.isoformat(),
                user.user_id,
            ))
            user_id = user.user_id
        else:
            cursor.execute("""
                INSERT INTO users (
                    telegram_id, first_name, last_name, username, language_code, is_premium,
                    total_wins, total_losses, total_wagered, net_profit,
                    created_at, last_visited
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                user.telegram_id, user.first_name, user.last_name, user.username, user.language_code,
                int(user.is_premium),
                user.total_wins, user.total_losses, user.total_wagered, user.net_profit,
                user.created_at.isoformat(), user.last_visited.isoformat(),
            ))
            user_id = cursor.lastrowid

        conn.commit()
        conn.close()
        return user_id

    def get_leaderboard(self, sort_by: str = "netProfit", limit: int = 20) -> List[User]:
        """Top users. Unknown sort keys fall back to net profit."""
        order = LEADERBOARD_SORTS.get(sort_by, LEADERBOARD_SORTS["netProfit"])
        conn = self._connect()
        rows = conn.execute(
            f"SELECT * FROM users ORDER BY {order}, user_id ASC LIMIT ?", (limit,)
        ).fetchall()
        conn.close()
        return [self._row_to_user(row) for row in rows]

    # === Wallet Operations ===

    def get_wallet_by_user(self, user_id: int) -> Optional[Wallet]:
        """Get a user's wallet."""
        conn = self._connect()
        row = conn.execute("SELECT * FROM wallets WHERE user_id = ?", (user_id,)).fetchone()
        conn.close()
        return self._row_to_wallet(row) if row else None

    def get_all_wallets(self) -> List[Wallet]:
        conn = self._connect()
        rows = conn.execute("SELECT * FROM wallets ORDER BY wallet_id").fetchall()
        conn.close()
        return [self._row_to_wallet(row) for row in rows]

    def _row_to_wallet(self, row: sqlite3.Row) -> Wallet:
        """Convert database row to Wallet object."""
        return Wallet(
            wallet_id=row["wallet_id"],
            user_id=row["user_id"],
            public_key=row["public_key"],
            encrypted_private_key=row["encrypted_private_key"],
            token_balance=row["token_balance"],
            provably_fair_state=CommitmentStore.from_dict(json.loads(row["provably_fair_state"] or "{}")),
            version=row["version"],
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else datetime.utcnow(),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else datetime.utcnow(),
        )

    def save_wallet(self, wallet: Wallet) -> int:
        """Insert or update a wallet. Returns wallet_id.

        Updates are conditional on the version the wallet was loaded with.

        Raises:
            ConcurrentModificationError: If the stored version moved on.
        """
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        now = datetime.utcnow()
        state = json.dumps(wallet.provably_fair_state.to_dict())

        try:
            if wallet.wallet_id:
                cursor.execute("""
                    UPDATE wallets SET
                        public_key=?, encrypted_private_key=?, token_balance=?,
                        provably_fair_state=?, version=version + 1, updated_at=?
                    WHERE wallet_id=? AND version=?
                """, (
                    wallet.public_key, wallet.encrypted_private_key, wallet.token_balance,
                    state, now.isoformat(),
                    wallet.wallet_id, wallet.version,
                ))
                if cursor.rowcount == 0:
                    conn.rollback()
                    raise ConcurrentModificationError(
                        f"Wallet {wallet.wallet_id} was modified concurrently (expected version {wallet.version})"
                    )
                wallet_id = wallet.wallet_id
                wallet.version += 1
            else:
                cursor.execute("""
                    INSERT INTO wallets (
                        user_id, public_key, encrypted_private_key, token_balance,
                        provably_fair_state, version, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """, (
                    wallet.user_id, wallet.public_key, wallet.encrypted_private_key, wallet.token_balance,
                    state, wallet.created_at.isoformat(), now.isoformat(),
                ))
                wallet_id = cursor.lastrowid
                wallet.wallet_id = wallet_id
                wallet.version = 0

            conn.commit()
        finally:
            conn.close()

        wallet.updated_at = now
        return wallet_id

    def credit_wallet(self, wallet_id: int, amount: int, tx: Transaction) -> int:
        """Atomically add amount (raw, signed) to a wallet and record the ledger entry.

        Returns:
            New raw balance
        """
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("""
                UPDATE wallets SET token_balance = token_balance + ?, version = version + 1, updated_at = ?
                WHERE wallet_id = ?
            """, (amount, datetime.utcnow().isoformat(), wallet_id))
            self._insert_transaction(conn, tx)
            balance = conn.execute(
                "SELECT token_balance FROM wallets WHERE wallet_id = ?", (wallet_id,)
            ).fetchone()[0]
            conn.commit()
            return balance
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # === Settlement ===

    def apply_settlement(self, settlement: Settlement) -> bool:
        """Apply everything that follows a successful bet transfer in one transaction.

        Inserts the history row, updates the user's stats, adds the balance
        delta, merges the commitment leaves into the wallet and records the
        ledger entry. The bet id makes this idempotent.

        Returns:
            True if applied, False if this bet id was already applied.

        Raises:
            NegativeBalanceError: If the delta would take the balance below zero.
        """
        history = settlement.history
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row

        try:
            conn.execute("BEGIN IMMEDIATE")

            already = conn.execute(
                "SELECT 1 FROM game_history WHERE bet_id = ?", (history.bet_id,)
            ).fetchone()
            if already:
                conn.rollback()
                logger.info(f"[SETTLE] Bet {history.bet_id} already applied, skipping")
                return False

            self._insert_history(conn, history)

            won = history.outcome == BetOutcome.WIN
            conn.execute("""
                UPDATE users SET
                    total_wagered = total_wagered + ?,
                    total_wins = total_wins + ?,
                    total_losses = total_losses + ?,
                    net_profit = net_profit + ?
                WHERE user_id = ?
            """, (
                history.wager_amount,
                1 if won else 0,
                0 if won else 1,
                history.payout_amount,
                history.user_id,
            ))

            row = conn.execute(
                "SELECT provably_fair_state FROM wallets WHERE wallet_id = ?", (settlement.wallet_id,)
            ).fetchone()
            if row is None:
                raise LookupError(f"Wallet {settlement.wallet_id} not found")

            state = CommitmentStore.from_dict(json.loads(row["provably_fair_state"] or "{}"))
            state.merge(settlement.commitments)

            cursor = conn.execute("""
                UPDATE wallets SET
                    token_balance = token_balance + ?,
                    provably_fair_state = ?,
                    version = version + 1,
                    updated_at = ?
                WHERE wallet_id = ? AND token_balance + ? >= 0
            """, (
                settlement.balance_delta,
                json.dumps(state.to_dict()),
                datetime.utcnow().isoformat(),
                settlement.wallet_id,
                settlement.balance_delta,
            ))
            if cursor.rowcount == 0:
                raise NegativeBalanceError(
                    f"Wallet {settlement.wallet_id} cannot absorb {settlement.balance_delta} for bet {history.bet_id}"
                )

            self._insert_transaction(conn, settlement.transaction)

            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def save_pending_settlement(self, settlement: Settlement, error: str):
        """Journal a settlement that could not be applied."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            INSERT OR REPLACE INTO pending_settlements (
                bet_id, user_id, client_seed, nonce, balance_delta, payload, error, created_at, resolved_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL)
        """, (
            settlement.history.bet_id,
            settlement.history.user_id,
            settlement.history.client_seed,
            settlement.history.nonce,
            settlement.balance_delta,
            json.dumps(settlement_to_dict(settlement)),
            error,
            datetime.utcnow().isoformat(),
        ))
        conn.commit()
        conn.close()

    def get_pending_settlements(self) -> List[Settlement]:
        conn = self._connect()
        rows = conn.execute(
            "SELECT payload FROM pending_settlements WHERE resolved_at IS NULL ORDER BY created_at"
        ).fetchall()
        conn.close()
        return [settlement_from_dict(json.loads(row["payload"])) for row in rows]

    def get_pending_balance_deltas(self, user_id: int) -> List[int]:
        """Raw balance changes of a user's unresolved journaled settlements."""
        conn = self._connect()
        rows = conn.execute(
            "SELECT balance_delta FROM pending_settlements WHERE user_id = ? AND resolved_at IS NULL",
            (user_id,),
        ).fetchall()
        conn.close()
        return [row["balance_delta"] for row in rows]

    def resolve_pending_settlement(self, bet_id: str):
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "UPDATE pending_settlements SET resolved_at = ? WHERE bet_id = ?",
            (datetime.utcnow().isoformat(), bet_id),
        )
        conn.commit()
        conn.close()

    # === Game History Operations ===

    def _insert_history(self, conn: sqlite3.Connection, history: GameHistory):
        conn.execute("""
            INSERT INTO game_history (
                bet_id, user_id, game_type, wager_amount, choice, outcome, payout_amount,
                platform_fee, server_seed, server_seed_hash, client_seed, nonce,
                resulting_hash, precommitted, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            history.bet_id, history.user_id, history.game_type, history.wager_amount,
            history.choice.value, history.outcome.value, history.payout_amount,
            history.platform_fee, history.server_seed, history.server_seed_hash,
            history.client_seed, history.nonce, history.resulting_hash,
            int(history.precommitted), history.timestamp.isoformat(),
        ))

    def save_history(self, history: GameHistory):
        """Insert a history row on its own (imports, fixtures)."""
        conn = sqlite3.connect(self.db_path)
        self._insert_history(conn, history)
        conn.commit()
        conn.close()

    def get_history(self, bet_id: str) -> Optional[GameHistory]:
        conn = self._connect()
        row = conn.execute("SELECT * FROM game_history WHERE bet_id = ?", (bet_id,)).fetchone()
        conn.close()
        return self._row_to_history(row) if row else None

    def is_nonce_settled(self, user_id: int, client_seed: str, nonce: int) -> bool:
        """Check whether a bet was already settled for this (client_seed, nonce).

        A settlement still waiting in the journal counts as settled: its
        transfer went through and its server seed has been revealed.
        """
        conn = self._connect()
        row = conn.execute("""
            SELECT 1 FROM game_history WHERE user_id = ? AND client_seed = ? AND nonce = ?
            UNION ALL
            SELECT 1 FROM pending_settlements
            WHERE user_id = ? AND client_seed = ? AND nonce = ? AND resolved_at IS NULL
            LIMIT 1
        """, (user_id, client_seed, nonce, user_id, client_seed, nonce)).fetchone()
        conn.close()
        return row is not None

    def get_user_history(self, user_id: int, limit: int = 25, offset: int = 0) -> List[GameHistory]:
        """Most recent first."""
        conn = self._connect()
        rows = conn.execute("""
            SELECT * FROM game_history WHERE user_id = ?
            ORDER BY timestamp DESC, rowid DESC
            LIMIT ? OFFSET ?
        """, (user_id, limit, offset)).fetchall()
        conn.close()
        return [self._row_to_history(row) for row in rows]

    def count_user_history(self, user_id: int) -> int:
        conn = self._connect()
        count = conn.execute("SELECT COUNT(*) FROM game_history WHERE user_id = ?", (user_id,)).fetchone()[0]
        conn.close()
        return count

    def _row_to_history(self, row: sqlite3.Row) -> GameHistory:
        """Convert database row to GameHistory object."""
        return GameHistory(
            bet_id=row["bet_id"],
            user_id=row["user_id"],
            game_type=row["game_type"],
            wager_amount=row["wager_amount"],
            choice=CoinSide(row["choice"]),
            outcome=BetOutcome(row["outcome"]),
            payout_amount=row["payout_amount"],
            platform_fee=row["platform_fee"],
            server_seed=row["server_seed"],
            server_seed_hash=row["server_seed_hash"],
            client_seed=row["client_seed"],
            nonce=row["nonce"],
            resulting_hash=row["resulting_hash"],
            precommitted=bool(row["precommitted"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

    # === Transaction Operations ===

    def _insert_transaction(self, conn: sqlite3.Connection, tx: Transaction):
        conn.execute("""
            INSERT INTO transactions (tx_id, user_id, tx_type, amount, token_type, bet_id, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            tx.tx_id, tx.user_id, tx.tx_type, tx.amount, tx.token_type, tx.bet_id,
            tx.timestamp.isoformat(),
        ))

    def get_user_transactions(self, user_id: int, limit: int = 20) -> List[Transaction]:
        """Get transactions for a user."""
        conn = self._connect()
        rows = conn.execute("""
            SELECT * FROM transactions WHERE user_id = ?
            ORDER BY timestamp DESC LIMIT ?
        """, (user_id, limit)).fetchall()
        conn.close()

        return [
            Transaction(
                tx_id=row["tx_id"],
                user_id=row["user_id"],
                tx_type=row["tx_type"],
                amount=row["amount"],
                token_type=row["token_type"],
                bet_id=row["bet_id"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
            )
            for row in rows
        ]


def settlement_to_dict(settlement: Settlement) -> dict:
    """Serialize a settlement for the pending_settlements journal."""
    h = settlement.history
    tx = settlement.transaction
    return {
        "history": {
            "bet_id": h.bet_id,
            "user_id": h.user_id,
            "game_type": h.game_type,
            "wager_amount": h.wager_amount,
            "choice": h.choice.value,
            "outcome": h.outcome.value,
            "payout_amount": h.payout_amount,
            "platform_fee": h.platform_fee,
            "server_seed": h.server_seed,
            "server_seed_hash": h.server_seed_hash,
            "client_seed": h.client_seed,
            "nonce": h.nonce,
            "resulting_hash": h.resulting_hash,
            "precommitted": h.precommitted,
            "timestamp": h.timestamp.isoformat(),
        },
        "wallet_id": settlement.wallet_id,
        "balance_delta": settlement.balance_delta,
        "commitments": settlement.commitments.to_dict(),
        "transaction": {
            "tx_id": tx.tx_id,
            "user_id": tx.user_id,
            "tx_type": tx.tx_type,
            "amount": tx.amount,
            "token_type": tx.token_type,
            "bet_id": tx.bet_id,
            "timestamp": tx.timestamp.isoformat(),
        },
    }


def settlement_from_dict(data: dict) -> Settlement:
    h = dict(data["history"])
    h["choice"] = CoinSide(h["choice"])
    h["outcome"] = BetOutcome(h["outcome"])
    h["timestamp"] = datetime.fromisoformat(h["timestamp"])
    tx = dict(data["transaction"])
    tx["timestamp"] = datetime.fromisoformat(tx["timestamp"])
    return Settlement(
        history=GameHistory(**h),
        wallet_id=data["wallet_id"],
        balance_delta=data["balance_delta"],
        commitments=CommitmentStore.from_dict(data["commitments"]),
        transaction=Transaction(**tx),
    )
