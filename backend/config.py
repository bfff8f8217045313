"""
Runtime configuration for the Coinflip Mini App backend.

Values come from the environment (a local .env file is loaded first).
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# SOLANA / TOKEN
# =============================================================================

RPC_URL = os.getenv("RPC_URL", "https://api.devnet.solana.com")

# House wallet (base58 secret key). Pays fees, receives losing wagers,
# pays out winnings and is the mint authority for test tokens.
ADMIN_WALLET_PRIVATE_KEY = os.getenv("ADMIN_WALLET_PRIVATE_KEY")

TOKEN_MINT = os.getenv("TOKEN_MINT", "BNDvNxhxhcRay8s5WK7wtpCwF9wGQiuUVo9zioGMtuS")
TOKEN_SYMBOL = os.getenv("TOKEN_SYMBOL", "FLIP")
TOKEN_DECIMALS = int(os.getenv("TOKEN_DECIMALS", "9"))

# Reserved transfer identifier for the house account
HOUSE_IDENTIFIER = "casino"

# Seconds to wait for the ledger before a transfer is treated as failed
TRANSFER_TIMEOUT_SECONDS = float(os.getenv("TRANSFER_TIMEOUT_SECONDS", "60"))

# =============================================================================
# GAME
# =============================================================================

# Percent of a winning wager kept by the platform (0-100)
PLATFORM_FEE_PERCENT = float(os.getenv("PLATFORM_FEE_PERCENT", "0"))

# Reject bets whose (clientSeed, nonce) hash was never fetched beforehand
REQUIRE_PRECOMMIT = _env_bool("REQUIRE_PRECOMMIT", False)

# Test-token faucet (devnet only)
TEST_MINT_ENABLED = _env_bool("TEST_MINT_ENABLED", False)
MAX_TEST_MINT_AMOUNT = float(os.getenv("MAX_TEST_MINT_AMOUNT", "1000"))

HISTORY_PAGE_LIMIT = 25
LEADERBOARD_LIMIT = 20

# =============================================================================
# STORAGE / SECURITY
# =============================================================================

DB_PATH = os.getenv("DB_PATH", "coinflip.db")
AUDIT_DB_PATH = os.getenv("AUDIT_DB_PATH", DB_PATH)

# Fernet key used to encrypt custodial wallet secrets
WALLET_ENCRYPTION_KEY = os.getenv("WALLET_ENCRYPTION_KEY")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

# =============================================================================
# TELEGRAM
# =============================================================================

BOT_TOKEN = os.getenv("BOT_TOKEN")
WEBAPP_URL = os.getenv("WEBAPP_URL", "https://your-deployed-app-url.com")
