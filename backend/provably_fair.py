"""
Provably fair primitives.

Commit-reveal scheme:
1. The server draws a random server seed and shows the player only its
   SHA-256 hash (the commitment).
2. The player bets with a client seed and a nonce.
3. The outcome is HMAC-SHA256(key=server_seed, msg=f"{client_seed}-{nonce}").
   The first hex character of the digest decides the side: 0-7 HEADS, 8-f TAILS.
4. After settlement the server seed is revealed. Anyone can recompute the
   hash and the digest to verify the result was fixed before the bet.
"""
import hashlib
import hmac
import secrets
from typing import Tuple

SERVER_SEED_BYTES = 32
HEADS_THRESHOLD = 8  # First nibble below this value = heads


def generate_commitment() -> Tuple[str, str]:
    """Generate a server seed and its commitment hash.

    Returns:
        Tuple of (server_seed, server_seed_hash)
    """
    server_seed = secrets.token_hex(SERVER_SEED_BYTES)
    return server_seed, hash_server_seed(server_seed)


def hash_server_seed(server_seed: str) -> str:
    """SHA-256 hex digest of a server seed (taken over its hex string)."""
    return hashlib.sha256(server_seed.encode()).hexdigest()


def result_hash(server_seed: str, client_seed: str, nonce: int) -> str:
    """HMAC-SHA256 digest for one bet."""
    message = f"{client_seed}-{nonce}"
    return hmac.new(server_seed.encode(), message.encode(), hashlib.sha256).hexdigest()


def resolve(server_seed: str, client_seed: str, nonce: int) -> Tuple[str, str]:
    """Resolve a coin flip.

    Returns:
        Tuple of (side, result_hash) where side is "heads" or "tails"
    """
    digest = result_hash(server_seed, client_seed, nonce)
    side = "heads" if int(digest[0], 16) < HEADS_THRESHOLD else "tails"
    return side, digest
