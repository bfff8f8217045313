"""
Scan every wallet's provably fair state for broken commitments.

A leaf is broken when its server seed or hash is missing/blank, or when the
hash is not the SHA-256 of the seed. Bets settled against such a leaf cannot
be verified by the player.

Usage:
    python scripts/find_invalid_pf_state.py [--db coinflip.db]
"""

import logging
import os
import sys
from typing import Dict, List

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import DB_PATH
from database import Database, Wallet

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def find_invalid_leaves(wallets: List[Wallet]) -> List[Dict]:
    """Return one record per broken commitment leaf."""
    invalid = []
    for wallet in wallets:
        for client_seed, nonce, commitment in wallet.provably_fair_state.items():
            if commitment.is_valid():
                continue

            if not commitment.server_seed.strip():
                reason = "missing serverSeed"
            elif not commitment.server_seed_hash.strip():
                reason = "missing serverSeedHash"
            else:
                reason = "hash does not match seed"

            invalid.append({
                "wallet_id": wallet.wallet_id,
                "user_id": wallet.user_id,
                "public_key": wallet.public_key,
                "client_seed": client_seed,
                "nonce": nonce,
                "reason": reason,
            })
    return invalid


def scan(db: Database) -> List[Dict]:
    wallets = db.get_all_wallets()
    invalid = find_invalid_leaves(wallets)
    logger.info(f"[PF-SCAN] Scanned {len(wallets)} wallet(s), {len(invalid)} invalid leaf/leaves")
    return invalid


# CLI interface
if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Find invalid provably fair commitments")
    parser.add_argument("--db", type=str, default=DB_PATH, help="Path to the SQLite database")

    args = parser.parse_args()

    results = scan(Database(args.db))

    for record in results:
        print(
            f"wallet={record['wallet_id']} user={record['user_id']} ({record['public_key']}) "
            f"clientSeed={record['client_seed']!r} nonce={record['nonce']}: {record['reason']}"
        )

    print(f"\nInvalid leaves: {len(results)}")
    sys.exit(1 if results else 0)
