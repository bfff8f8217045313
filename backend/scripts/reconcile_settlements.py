"""
Replay bet settlements whose local write failed after the token transfer.

The transfer already happened on-chain, so these rows must be applied to
bring history, stats and balances back in line. Applying is idempotent per
bet id; running this twice is safe.

Usage:
    python scripts/reconcile_settlements.py            # list pending (dry run)
    python scripts/reconcile_settlements.py --execute  # apply them
"""

import logging
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import DB_PATH
from database import Database
from game import reconcile_pending_settlements
from security import audit_logger
from utils import from_token_amount

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# CLI interface
if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Apply pending bet settlements")
    parser.add_argument("--db", type=str, default=DB_PATH, help="Path to the SQLite database")
    parser.add_argument("--execute", action="store_true", help="Actually apply settlements (default is dry run)")

    args = parser.parse_args()

    db = Database(args.db)
    pending = db.get_pending_settlements()

    print(f"Pending settlements: {len(pending)}")
    for settlement in pending:
        history = settlement.history
        print(
            f"  {history.bet_id} user={history.user_id} {history.outcome.value} "
            f"delta={from_token_amount(settlement.balance_delta)} at {history.timestamp.isoformat()}"
        )

    if not args.execute:
        print("\nDry run, nothing applied. Use --execute to apply.")
        sys.exit(0)

    applied = reconcile_pending_settlements(db)
    print(f"\nApplied: {applied}")

    summary = audit_logger.get_fairness_summary(hours=24)
    print(
        f"Last 24h: {summary['bets_settled']} bets settled, "
        f"{summary['pending_settlements']} persistence failures, "
        f"{summary['transfer_failures']} transfer failures"
    )
