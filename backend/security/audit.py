"""
Security audit log.

Records fairness and money-movement events (fallback commitments, rejected
replays, failed transfers, settlements that need reconciliation) in their own
SQLite table so they can be reviewed independently of the application log.
"""
import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union, List

from config import AUDIT_DB_PATH

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of security events to audit."""
    # Onboarding
    USER_REGISTERED = "user_registered"
    WALLET_CREATED = "wallet_created"

    # Provably fair
    FALLBACK_COMMITMENT = "fallback_commitment"
    REPLAY_REJECTED = "replay_rejected"

    # Settlement
    BET_SETTLED = "bet_settled"
    TRANSFER_FAILED = "transfer_failed"
    SETTLEMENT_PERSIST_FAILED = "settlement_persist_failed"
    SETTLEMENT_RECONCILED = "settlement_reconciled"
    CONCURRENT_MODIFICATION = "concurrent_modification"

    # Faucet
    TOKENS_MINTED = "tokens_minted"


class AuditSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_LOG_LEVELS = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARNING: logging.WARNING,
    AuditSeverity.CRITICAL: logging.CRITICAL,
}


class AuditLogger:
    """Append-only audit trail backed by SQLite.

    The table is created on first use so importing this module never touches
    the filesystem.
    """

    def __init__(self, db_path: str = "coinflip.db"):
        self.db_path = db_path
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        if not self._initialized:
            self._create_table()
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_table(self):
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    user_id INTEGER,
                    bet_id TEXT,
                    details TEXT,
                    timestamp TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs(timestamp)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_logs(event_type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_bet ON audit_logs(bet_id)")
            conn.commit()
        self._initialized = True

    def log(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity = AuditSeverity.INFO,
        user_id: Optional[int] = None,
        bet_id: Optional[str] = None,
        details: Optional[Union[dict, str]] = None,
    ):
        """Record an event and mirror it to the application log.

        Never raises: a failed audit write is reported through the
        application logger instead.

        Args:
            event_type: Type of event
            severity: Severity level
            user_id: Internal user ID if applicable
            bet_id: Bet ID if applicable
            details: Extra context, stored as JSON
        """
        if isinstance(details, dict):
            details_text = json.dumps(details, sort_keys=True, default=str)
        else:
            details_text = details

        summary = f"[AUDIT] {event_type.value}"
        if user_id:
            summary += f" user={user_id}"
        if bet_id:
            summary += f" bet={bet_id}"
        if details_text:
            summary += f" {details_text}"
        logger.log(_LOG_LEVELS[severity], summary)

        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    "INSERT INTO audit_logs (event_type, severity, user_id, bet_id, details, timestamp) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (event_type.value, severity.value, user_id, bet_id, details_text, datetime.utcnow().isoformat()),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to write audit log ({event_type.value}): {e}", exc_info=True)

    def _query(self, where: str, params: list, limit: int) -> List[dict]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"SELECT * FROM audit_logs WHERE {where} ORDER BY id DESC LIMIT ?",
                params + [limit],
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> dict:
        event = dict(row)
        if event["details"]:
            try:
                event["details"] = json.loads(event["details"])
            except ValueError:
                pass  # plain-text details
        return event

    def get_recent_events(
        self,
        limit: int = 100,
        severity: Optional[AuditSeverity] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> List[dict]:
        """Most recent events first, optionally filtered."""
        clauses, params = ["1=1"], []
        if severity:
            clauses.append("severity = ?")
            params.append(severity.value)
        if event_type:
            clauses.append("event_type = ?")
            params.append(event_type.value)
        return self._query(" AND ".join(clauses), params, limit)

    def get_bet_events(self, bet_id: str) -> List[dict]:
        """Audit trail of a single bet."""
        return self._query("bet_id = ?", [bet_id], limit=100)

    def get_fairness_summary(self, hours: int = 24) -> dict:
        """Counts of fairness-relevant events over the last N hours."""
        cutoff = (datetime.utcnow() - timedelta(hours=hours)).isoformat()
        with closing(self._connect()) as conn:
            counts = dict(conn.execute(
                "SELECT event_type, COUNT(*) FROM audit_logs WHERE timestamp > ? GROUP BY event_type",
                (cutoff,),
            ).fetchall())

        return {
            "period_hours": hours,
            "bets_settled": counts.get(AuditEventType.BET_SETTLED.value, 0),
            "fallback_commitments": counts.get(AuditEventType.FALLBACK_COMMITMENT.value, 0),
            "replays_rejected": counts.get(AuditEventType.REPLAY_REJECTED.value, 0),
            "transfer_failures": counts.get(AuditEventType.TRANSFER_FAILED.value, 0),
            "pending_settlements": counts.get(AuditEventType.SETTLEMENT_PERSIST_FAILED.value, 0),
        }


# Global audit logger instance
audit_logger = AuditLogger(AUDIT_DB_PATH)
